"""
Onboarding Graph - dynamic onboarding workflow engine
"""
from onboarding_graph.config import OnboardingConfig, load_config
from onboarding_graph.orchestration.service import OnboardingService

__version__ = "0.1.0"

__all__ = [
    'OnboardingConfig',
    'OnboardingService',
    'load_config',
]
