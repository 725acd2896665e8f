"""
Corporate CRM Workflow
Blueprint registry.
"""
