from .base import Provider, ProviderResponse
from .script import ScriptProvider
from .simulated import SimulatedProvider

__all__ = ["Provider", "ProviderResponse", "ScriptProvider", "SimulatedProvider"]
