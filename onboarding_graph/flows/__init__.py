"""
Reference onboarding flows
"""
from onboarding_graph.flows.merchant import build_merchant_graph

__all__ = ['build_merchant_graph']
