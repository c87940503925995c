"""
Licensing - Remote License Validator

Client HTTP du service de validation distant.

POST {base_url}/licenses/validate {"token": ..., "machineId": ...}
Réponse: {"valid": bool, "reason": str?, "expiresAt": iso?, "token": jwt?}

Si la réponse porte un jeton JWT, il doit être signé HS256 avec le secret
partagé ; ses claims font foi sur le corps de la réponse.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import jwt

from .interfaces import IRemoteLicenseValidator, RemoteValidationResult
from ..logging.structured_logger import StructuredLogger
from ..network.interfaces import TimeoutConfig


class RemoteValidatorError(Exception):
    """Réponse distante inexploitable."""

    pass


class HttpRemoteLicenseValidator(IRemoteLicenseValidator):
    """
    Validation distante via httpx.AsyncClient.

    Les erreurs de transport et les réponses 5xx sont levées en
    ConnectionError (transitoires, retryables) ; une réponse 4xx vaut
    licence invalide.

    Example:
        validator = HttpRemoteLicenseValidator("https://licenses.example.com", token_secret)
        result = await validator.validate("HRMS-AB12-CD34-EF56", "srv-01")
        await validator.close()
    """

    VALIDATE_PATH: str = "/licenses/validate"
    TOKEN_ALGORITHMS = ["HS256"]

    def __init__(
        self,
        base_url: str,
        response_token_secret: Optional[str] = None,
        timeouts: Optional[TimeoutConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Args:
            base_url: URL du service
            response_token_secret: Secret HS256 des jetons de réponse
            timeouts: Timeouts connexion/requête
            client: Client httpx (injectable pour tests)
            logger: Logger structuré
        """
        if not base_url:
            raise ValueError("base_url obligatoire")
        config = timeouts or TimeoutConfig()
        self.base_url = base_url.rstrip("/")
        self._token_secret = response_token_secret
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout, connect=config.connection_timeout)
        )
        self._logger = logger or StructuredLogger("hrsm.remote_validator")

    async def validate(self, token: str, machine_id: Optional[str] = None) -> RemoteValidationResult:
        url = f"{self.base_url}{self.VALIDATE_PATH}"
        self._logger.debug("Remote license validation", url=url, machine_id=machine_id)
        try:
            response = await self._client.post(url, json={"token": token, "machineId": machine_id})
        except httpx.TransportError as e:
            raise ConnectionError(f"Service de validation injoignable: {e}") from e

        if response.status_code >= 500:
            raise ConnectionError(f"Service de validation indisponible (HTTP {response.status_code})")
        if response.status_code >= 400:
            return RemoteValidationResult(valid=False, reason=f"http_{response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return RemoteValidationResult(valid=False, reason="invalid_response_body")
        if not isinstance(body, dict):
            return RemoteValidationResult(valid=False, reason="invalid_response_body")
        return self._parse_body(body)

    async def close(self) -> None:
        """Ferme le client HTTP."""
        await self._client.aclose()

    def _parse_body(self, body: Dict[str, Any]) -> RemoteValidationResult:
        claims: Dict[str, Any] = {}
        response_token = body.get("token")
        if response_token is not None:
            try:
                claims = self._decode_token(response_token)
            except jwt.ExpiredSignatureError:
                return RemoteValidationResult(valid=False, reason="response_token_expired")
            except (jwt.InvalidTokenError, RemoteValidatorError) as e:
                self._logger.warn("Invalid remote response token", error=str(e))
                return RemoteValidationResult(valid=False, reason="invalid_response_token")
            body = {**body, **claims}

        expires_at = None
        if body.get("expiresAt"):
            try:
                expires_at = datetime.fromisoformat(str(body["expiresAt"]))
            except ValueError:
                return RemoteValidationResult(valid=False, reason="invalid_expires_at")

        return RemoteValidationResult(
            valid=body.get("valid") is True,
            reason=body.get("reason"),
            expires_at=expires_at,
            claims=claims,
        )

    def _decode_token(self, response_token: Any) -> Dict[str, Any]:
        if not self._token_secret:
            raise RemoteValidatorError("Jeton de réponse reçu sans secret configuré")
        if not isinstance(response_token, str):
            raise RemoteValidatorError("Jeton de réponse non textuel")
        return jwt.decode(
            response_token,
            self._token_secret,
            algorithms=self.TOKEN_ALGORITHMS,
            options={"require": ["exp"], "verify_exp": True},
        )
