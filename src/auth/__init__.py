"""
Authentication: local bcrypt accounts, directory (LDAP) accounts,
JWT session tokens and single-use password reset tickets.
"""
