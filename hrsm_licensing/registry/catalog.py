"""
Registry - Default Module Catalog

Catalogue commercial par défaut, au même format brut qu'un catalogue YAML
(voir ConfigLoader.load_catalog). "custom" / "unlimited" signifient
"sans borne" (négocié hors catalogue).
"""
from typing import Any, Dict, List, Optional

GB = 1073741824
UNLIMITED = "unlimited"
CUSTOM = "custom"


def _tiers(
    starter: tuple,
    business: tuple,
    starter_limits: Dict[str, int],
    business_limits: Dict[str, int],
    enterprise: Optional[tuple] = None,
) -> Dict[str, Any]:
    """Grille tarifaire ; enterprise sur devis et illimité sauf précision."""
    enterprise_monthly, enterprise_on_premise = enterprise or (CUSTOM, CUSTOM)
    return {
        "starter": {"monthly": starter[0], "onPremise": starter[1], "limits": starter_limits},
        "business": {"monthly": business[0], "onPremise": business[1], "limits": business_limits},
        "enterprise": {
            "monthly": enterprise_monthly,
            "onPremise": enterprise_on_premise,
            "limits": {name: UNLIMITED for name in starter_limits},
        },
    }


def _standard_limits(storage_gb: float, api_calls: int, employees: int = 50) -> Dict[str, int]:
    return {"employees": employees, "storage": int(storage_gb * GB), "apiCalls": api_calls}


DEFAULT_CATALOG: List[Dict[str, Any]] = [
    {
        "key": "hr-core",
        "displayName": "HR Core",
        "core": True,
        "commercial": {
            "description": "Essential HR functionality: users, authentication, roles, departments and audit logging.",
            "targetSegment": "All customers - included in every deployment",
            "valueProposition": "Secure user management, role-based access control and audit trails",
            "pricing": _tiers(
                (0, 0), (0, 0),
                _standard_limits(1, 10000),
                _standard_limits(10, 50000, employees=200),
                enterprise=(0, 0),
            ),
        },
        "dependencies": {"required": [], "optional": []},
        "features": {},
    },
    {
        "key": "attendance",
        "displayName": "Attendance & Time Tracking",
        "commercial": {
            "description": "Attendance, working hours and time-off tracking with biometric device integration.",
            "targetSegment": "Businesses with hourly or shift-based employees",
            "valueProposition": "Automated timesheets and labor law compliance",
            "pricing": _tiers(
                (5, 500), (8, 1500),
                {**_standard_limits(1, 10000), "devices": 2, "records": 10000},
                {**_standard_limits(10, 50000, employees=200), "devices": 10, "records": 50000},
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["reporting"]},
        "features": {
            "biometricDevices": "business",
            "geoFencing": "business",
            "aiAnomalyDetection": "enterprise",
            "shiftManagement": "business",
        },
    },
    {
        "key": "leave",
        "displayName": "Leave Management",
        "commercial": {
            "description": "Vacation, sick leave and time-off requests with approval workflows.",
            "targetSegment": "All businesses managing employee time-off",
            "valueProposition": "Eliminate manual leave tracking and provide employee self-service",
            "pricing": _tiers(
                (3, 300), (5, 800),
                _standard_limits(0.5, 5000),
                _standard_limits(2, 25000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["attendance", "reporting"]},
        "features": {
            "customWorkflows": "business",
            "multiLevelApproval": "business",
            "leaveAccrual": "starter",
            "carryForward": "business",
        },
    },
    {
        "key": "payroll",
        "displayName": "Payroll Management",
        "commercial": {
            "description": "Salary calculation, tax handling and payslips integrated with attendance.",
            "targetSegment": "Businesses processing payroll in-house",
            "valueProposition": "Reduce payroll processing time and ensure tax compliance",
            "pricing": _tiers(
                (10, 2000), (15, 5000),
                _standard_limits(2, 15000),
                _standard_limits(10, 50000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core", "attendance"], "optional": ["leave", "reporting"]},
        "features": {
            "taxCalculation": "starter",
            "directDeposit": "business",
            "benefitsManagement": "business",
            "multiCurrency": "enterprise",
            "customDeductions": "business",
        },
    },
    {
        "key": "documents",
        "displayName": "Document Management",
        "commercial": {
            "description": "Secure employee document storage, versioning and e-signatures.",
            "targetSegment": "Businesses managing contracts and certifications",
            "valueProposition": "Eliminate paper filing and automate expiration tracking",
            "pricing": _tiers(
                (4, 400), (7, 1200),
                _standard_limits(5, 10000),
                _standard_limits(50, 30000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["reporting"]},
        "features": {
            "versionControl": "business",
            "eSignatures": "business",
            "expirationTracking": "starter",
            "templateManagement": "business",
            "bulkUpload": "business",
        },
    },
    {
        "key": "communication",
        "displayName": "Communication & Notifications",
        "commercial": {
            "description": "Announcements, messaging and notifications for the workforce.",
            "targetSegment": "Organizations with remote or distributed teams",
            "valueProposition": "Centralize employee communications",
            "pricing": _tiers(
                (2, 200), (4, 600),
                _standard_limits(1, 20000),
                _standard_limits(5, 100000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": []},
        "features": {
            "directMessaging": "business",
            "groupChannels": "business",
            "mobilePush": "business",
            "fileSharing": "business",
            "readReceipts": "enterprise",
        },
    },
    {
        "key": "reporting",
        "displayName": "Reporting & Analytics",
        "commercial": {
            "description": "Dashboards, scheduled reports and workforce analytics.",
            "targetSegment": "Data-driven organizations and HR analytics teams",
            "valueProposition": "Data-driven decisions and automated compliance reporting",
            "pricing": _tiers(
                (6, 800), (12, 2500),
                _standard_limits(2, 15000),
                _standard_limits(10, 50000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": []},
        "features": {
            "customReports": "business",
            "scheduledReports": "business",
            "dashboards": "starter",
            "dataExport": "starter",
            "predictiveAnalytics": "enterprise",
        },
    },
    {
        "key": "tasks",
        "displayName": "Task & Work Reporting",
        "commercial": {
            "description": "Task assignment, work reports and project tracking.",
            "targetSegment": "Project-based organizations",
            "valueProposition": "Track project progress and team productivity",
            "pricing": _tiers(
                (4, 500), (7, 1500),
                _standard_limits(1, 10000),
                _standard_limits(5, 30000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["reporting"]},
        "features": {
            "taskAssignment": "starter",
            "workReporting": "starter",
            "projectTracking": "business",
            "timeTracking": "business",
            "ganttCharts": "enterprise",
        },
    },
    {
        "key": "clinic",
        "displayName": "Medical Clinic",
        "commercial": {
            "description": "On-site clinic visits, medical records and sick-leave certification.",
            "targetSegment": "Employers running an occupational health clinic",
            "valueProposition": "Link medical visits to sick leave and keep records confidential",
            "pricing": _tiers(
                (6, 800), (10, 2000),
                _standard_limits(2, 10000),
                _standard_limits(10, 30000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["documents", "leave"]},
        "features": {
            "medicalRecords": "starter",
            "prescriptions": "business",
            "sickLeaveCertification": "business",
        },
    },
    {
        "key": "life-insurance",
        "displayName": "Life Insurance",
        "commercial": {
            "description": "Group life insurance policies, beneficiaries and claims.",
            "targetSegment": "Employers offering insurance benefits",
            "valueProposition": "Manage policies and claims alongside payroll deductions",
            "pricing": _tiers(
                (5, 700), (9, 1800),
                _standard_limits(1, 10000),
                _standard_limits(5, 30000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["payroll", "documents"]},
        "features": {
            "policyManagement": "starter",
            "claimsProcessing": "business",
            "insuranceReports": "business",
        },
    },
    {
        "key": "surveys",
        "displayName": "Employee Surveys",
        "commercial": {
            "description": "Engagement surveys, polls and anonymous feedback.",
            "targetSegment": "Organizations measuring employee engagement",
            "valueProposition": "Measure engagement and act on feedback",
            "pricing": _tiers(
                (2, 200), (4, 600),
                _standard_limits(0.5, 5000),
                _standard_limits(2, 20000, employees=200),
            ),
        },
        "dependencies": {"required": ["hr-core"], "optional": ["reporting"]},
        "features": {
            "anonymousResponses": "starter",
            "surveyTemplates": "business",
            "sentimentAnalysis": "enterprise",
        },
    },
]
