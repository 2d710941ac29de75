"""
Onboarding Core - graph model, validation, requirement tables
"""
