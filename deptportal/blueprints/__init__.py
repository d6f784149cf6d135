"""
Department Portal
Blueprint registry.

    health_bp      /api/v1/health
    form_bp        /api/v1/forms, /api/v1/form-categories
    response_bp    /api/v1/responses
    department_bp  /api/v1/members, /api/v1/departments
    jobs_bp        /api/v1/jobs
"""
