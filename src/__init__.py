"""
NWF Forms Portal — internal request forms with approval routing

Packages:
    api/        Blueprint, bearer auth and JSON routes
    auth/       Local and directory login, tokens, password reset
    forms/      Form types, lifecycle, details normalizer, PDF renderer
    agents/     Outbound email (SMTP transport + approval/reset messages)
    core/       Shared configuration, database, errors, paths, security
"""
