"""Upload security gate: signatures, image integrity, virus scanning and quotas."""

from .gate import UploadCandidate, UploadGate, GateResult, sanitize_filename
from .quota import QuotaDecision, UploadQuotaTracker
from .scanner import ClamdClient, ScanResult, ScannerState, VirusScanner

__all__ = [
	"UploadCandidate",
	"UploadGate",
	"GateResult",
	"sanitize_filename",
	"QuotaDecision",
	"UploadQuotaTracker",
	"ClamdClient",
	"ScanResult",
	"ScannerState",
	"VirusScanner",
]
