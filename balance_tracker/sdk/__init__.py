"""
SDK for the upstream inference service.

Provides balance lookups and model listing for tracked API keys.
"""

from .siliconflow_client import BalanceReading, SiliconFlowClient, UpstreamFailure

__all__ = ["BalanceReading", "SiliconFlowClient", "UpstreamFailure"]
