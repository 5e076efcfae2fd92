"""
Kubernetes data access.

Contains the REST client for the Kubernetes API server, quantity parsing
helpers and the node metrics reconciliation engine.
"""
