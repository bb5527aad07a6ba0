"""
Clinic CRM Backend Package.

FastAPI service layer for the clinic sales CRM. Holds the server-side jobs that
feed the CRM: Feegow patient import, team scoring, churn heuristics,
notification automations, the daily sales digest and the Alexa voice skill.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, and dependencies
    - models: Pydantic schemas and enums
    - services: Business logic services
    - jobs: Scheduled automation jobs
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
