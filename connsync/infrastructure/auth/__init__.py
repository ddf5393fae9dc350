"""Credential providers for the CredentialProvider interface."""
