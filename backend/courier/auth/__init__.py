"""Authentication module (email/password accounts).

Services:
    - UserService: bcrypt password hashing, DuckDB user table, PyJWT tokens.
"""
