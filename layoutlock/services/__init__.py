"""
Domain services: image sampling, layout verification, model client, quotas
"""
