"""
Authentication app: Keycloak JWT sessions and audit logging.
"""
