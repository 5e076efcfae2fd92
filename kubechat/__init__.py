"""
kubechat - authenticated chat endpoint with Kubernetes node metrics.

A small HTTP service that forwards chat prompts to an LLM backend and lets
the model inspect cluster node utilization through the Kubernetes API.
"""

__version__ = "0.1.0"
__author__ = "kubechat Contributors"
