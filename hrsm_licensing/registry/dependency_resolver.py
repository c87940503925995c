"""
Registry - Dependency Resolver

Graphe des dépendances requises entre modules : détection de cycles
(DFS trois couleurs), ordre d'activation, requêtes transitives.

Invariants:
    - Le graphe est validé une fois au chargement du registre ; un cycle
      empêche le démarrage
    - Toutes les requêtes sont pures : le graphe est immuable après construction
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .interfaces import ModuleConfig


class CircularDependencyError(Exception):
    """Cycle dans le graphe des dépendances requises (fatal au chargement)."""

    def __init__(self, cycles: List[List[str]]):
        self.cycles = cycles
        rendered = "; ".join(" -> ".join(cycle) for cycle in cycles)
        super().__init__(f"Dépendance circulaire détectée: {rendered}")


class MissingDependencyError(Exception):
    """Activation refusée : dépendances requises non activées."""

    def __init__(self, module_key: str, missing_dependencies: Sequence[str], tenant_id: Optional[str] = None):
        self.module_key = module_key
        self.missing_dependencies = list(missing_dependencies)
        self.tenant_id = tenant_id
        super().__init__(
            f"Module '{module_key}' requiert des modules non activés: {', '.join(self.missing_dependencies)}"
        )


class UnknownModuleError(Exception):
    """Module absent du registre."""

    def __init__(self, module_key: str):
        self.module_key = module_key
        super().__init__(f"Module inconnu: {module_key}")


WHITE, GRAY, BLACK = 0, 1, 2


def find_cycles(graph: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """
    DFS trois couleurs sur les arêtes requises.

    Un arc vers un noeud gris (en cours de visite) ferme un cycle ; le cycle
    est rendu comme chemin fermé, ex. ["a", "b", "a"]. Les références vers
    des modules absents du graphe sont ignorées ici.

    Args:
        graph: Adjacence module -> dépendances requises

    Returns:
        Liste des cycles trouvés (vide si DAG)
    """
    colors: Dict[str, int] = {node: WHITE for node in graph}
    path: List[str] = []
    cycles: List[List[str]] = []

    def visit(node: str) -> None:
        colors[node] = GRAY
        path.append(node)
        for dep in graph[node]:
            state = colors.get(dep)
            if state == GRAY:
                cycles.append(path[path.index(dep):] + [dep])
            elif state == WHITE:
                visit(dep)
        path.pop()
        colors[node] = BLACK

    for node in graph:
        if colors[node] == WHITE:
            visit(node)

    return cycles


@dataclass(frozen=True)
class ActivationValidation:
    """Résultat de validation d'activation d'un module."""
    module_key: str
    valid: bool
    missing_dependencies: Tuple[str, ...] = ()
    required_dependencies: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DeactivationValidation:
    """Résultat de validation de désactivation d'un module."""
    module_key: str
    valid: bool
    blocking_dependents: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GraphValidation:
    valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitiveDependencies:
    direct_required: Tuple[str, ...]
    direct_optional: Tuple[str, ...]
    transitive: Tuple[str, ...]


class DependencyResolver:
    """
    Requêtes sur le DAG des modules.

    Example:
        resolver = registry.resolver
        resolver.activation_order(["payroll"])  # ["hr-core", "attendance", "payroll"]
        resolver.validate_activation("payroll", ["hr-core"]).missing_dependencies  # ("attendance",)
    """

    def __init__(self, modules: Mapping[str, ModuleConfig]):
        """
        Args:
            modules: Configs par clé (déjà validées)
        """
        self._graph: Dict[str, Tuple[str, ...]] = {
            key: tuple(config.dependencies.required) for key, config in modules.items()
        }
        self._optional: Dict[str, Tuple[str, ...]] = {
            key: tuple(config.dependencies.optional) for key, config in modules.items()
        }
        self._reverse: Dict[str, Set[str]] = {key: set() for key in self._graph}
        for key, deps in self._graph.items():
            for dep in deps:
                if dep in self._reverse:
                    self._reverse[dep].add(key)
        self._root = self._find_root()

    @property
    def root_module(self) -> Optional[str]:
        """Module dont tous les autres dépendent transitivement (hr-core)."""
        return self._root

    def build_graph(self) -> Dict[str, FrozenSet[str]]:
        """Copie de l'adjacence module -> dépendances requises."""
        return {key: frozenset(deps) for key, deps in self._graph.items()}

    def detect_cycles(self) -> List[List[str]]:
        return find_cycles(self._graph)

    def validate_graph(self) -> GraphValidation:
        """
        Valide le graphe complet.

        Erreurs : dépendance requise inconnue, cycle.
        Avertissements : dépendance optionnelle inconnue.
        """
        errors: List[str] = []
        warnings: List[str] = []
        for key, deps in self._graph.items():
            for dep in deps:
                if dep not in self._graph:
                    errors.append(f"{key}: dépendance requise inconnue '{dep}'")
        for key, deps in self._optional.items():
            for dep in deps:
                if dep not in self._graph:
                    warnings.append(f"{key}: dépendance optionnelle inconnue '{dep}'")
        for cycle in self.detect_cycles():
            errors.append(f"cycle: {' -> '.join(cycle)}")
        return GraphValidation(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))

    def resolve_dependencies(self, module_key: str, include_optional: bool = False) -> List[str]:
        """
        Dépendances transitives d'un module (sans le module lui-même).

        Raises:
            UnknownModuleError: Module inconnu
        """
        self._require_known(module_key)
        result: List[str] = []
        seen = {module_key}
        stack = list(reversed(self._edges(module_key, include_optional)))
        while stack:
            dep = stack.pop()
            if dep in seen or dep not in self._graph:
                continue
            seen.add(dep)
            result.append(dep)
            stack.extend(reversed(self._edges(dep, include_optional)))
        return result

    def resolve_transitive_dependencies(self, module_key: str) -> TransitiveDependencies:
        """Sépare dépendances directes (requises/optionnelles) et transitives."""
        self._require_known(module_key)
        direct_required = self._graph[module_key]
        direct_optional = self._optional[module_key]
        direct = set(direct_required) | set(direct_optional)
        transitive = tuple(d for d in self.resolve_dependencies(module_key) if d not in direct)
        return TransitiveDependencies(direct_required, direct_optional, transitive)

    def activation_order(self, requested_modules: Iterable[str]) -> List[str]:
        """
        Ordre d'activation : post-ordre DFS, dépendances avant dépendants,
        dédupliqué par première occurrence ; la racine universelle en tête.

        Raises:
            UnknownModuleError: Un module demandé est inconnu
        """
        order: List[str] = []
        seen: Set[str] = set()

        def visit(key: str) -> None:
            if key in seen:
                return
            seen.add(key)
            for dep in self._graph[key]:
                visit(dep)
            order.append(key)

        for key in requested_modules:
            self._require_known(key)
            visit(key)

        if self._root is not None and self._root in order and order[0] != self._root:
            order.remove(self._root)
            order.insert(0, self._root)
        return order

    def is_dependency(self, module_a: str, module_b: str) -> bool:
        """True si module_b est atteignable depuis module_a par arêtes requises."""
        if module_a == module_b or module_a not in self._graph:
            return False
        return module_b in self.resolve_dependencies(module_a)

    def validate_activation(self, module_key: str, enabled_modules: Iterable[str]) -> ActivationValidation:
        """missing = requises(module) - activés, dans l'ordre déclaré."""
        if module_key not in self._graph:
            return ActivationValidation(
                module_key=module_key,
                valid=False,
                errors=(f"Module inconnu: {module_key}",),
            )
        enabled = set(enabled_modules)
        required = self._graph[module_key]
        missing = tuple(dep for dep in required if dep not in enabled)
        errors = tuple(f"Dépendance requise non activée: {dep}" for dep in missing)
        return ActivationValidation(
            module_key=module_key,
            valid=not missing,
            missing_dependencies=missing,
            required_dependencies=required,
            errors=errors,
        )

    def require_activation(
        self, module_key: str, enabled_modules: Iterable[str], tenant_id: Optional[str] = None
    ) -> ActivationValidation:
        """
        Comme validate_activation mais lève en cas d'échec.

        Raises:
            UnknownModuleError: Module inconnu
            MissingDependencyError: Dépendances manquantes (liste fournie)
        """
        self._require_known(module_key)
        result = self.validate_activation(module_key, enabled_modules)
        if not result.valid:
            raise MissingDependencyError(module_key, result.missing_dependencies, tenant_id)
        return result

    def dependents(self, module_key: str) -> List[str]:
        """Modules qui requièrent module_key, directement ou transitivement."""
        self._require_known(module_key)
        result: List[str] = []
        seen = {module_key}
        stack = sorted(self._reverse[module_key], reverse=True)
        while stack:
            key = stack.pop()
            if key in seen:
                continue
            seen.add(key)
            result.append(key)
            stack.extend(sorted(self._reverse[key], reverse=True))
        return result

    def validate_deactivation(self, module_key: str, enabled_modules: Iterable[str]) -> DeactivationValidation:
        """Refuse la désactivation si un module activé en dépend."""
        enabled = set(enabled_modules)
        blocking = tuple(key for key in self.dependents(module_key) if key in enabled)
        return DeactivationValidation(module_key=module_key, valid=not blocking, blocking_dependents=blocking)

    def _edges(self, module_key: str, include_optional: bool) -> Tuple[str, ...]:
        edges = self._graph[module_key]
        if include_optional:
            edges = edges + tuple(d for d in self._optional[module_key] if d not in edges)
        return edges

    def _require_known(self, module_key: str) -> None:
        if module_key not in self._graph:
            raise UnknownModuleError(module_key)

    def _find_root(self) -> Optional[str]:
        leaves = [key for key, deps in self._graph.items() if not deps]
        for leaf in leaves:
            if all(key == leaf or leaf in self.resolve_dependencies(key) for key in self._graph):
                return leaf
        return None
