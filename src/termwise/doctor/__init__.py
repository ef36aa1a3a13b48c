"""Error doctor — quick fixes first, AI analysis when they run out."""

from termwise.doctor.models import AnalysisResult, ErrorContext, Fix
from termwise.doctor.providers import AIProvider, CliProvider, HostedModelProvider, create_providers
from termwise.doctor.quickfix import QUICK_FIXES, try_quick_fix
from termwise.doctor.service import AnalysisStage, ErrorDoctorService, parse_fix

__all__ = [
    "AIProvider",
    "AnalysisResult",
    "AnalysisStage",
    "CliProvider",
    "ErrorContext",
    "ErrorDoctorService",
    "Fix",
    "HostedModelProvider",
    "QUICK_FIXES",
    "create_providers",
    "parse_fix",
    "try_quick_fix",
]
