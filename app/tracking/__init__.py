"""Job-status tracking engine package: poller, status interpreter and outcome dispatcher."""

from .classification import tracking_classify_transport_error
from .dispatcher import OutcomeDispatcher
from .errors import (
	TrackingAlreadyActiveError,
	TrackingError,
	TrackingInvalidArgumentError,
	TrackingSessionNotFoundError,
)
from .interfaces import (
	ErrorClassification,
	InterpretedStatus,
	OutcomeCallback,
	ProgressCallback,
	StatusClass,
	TickResult,
	TrackingConfig,
	TrackingSession,
	TrackingSessionView,
	TrackingState,
	TransportFailure,
)
from .interpreter import StatusInterpreter, tracking_classify_status_tag
from .poller import JobStatusTracker, tracker_validate_config
from .retry_strategy import ExponentialJitterStrategy, FixedIntervalStrategy, PollWaitStrategy
from .service import TrackingService, TrackingServiceConfig

__all__ = [
	"ErrorClassification",
	"ExponentialJitterStrategy",
	"FixedIntervalStrategy",
	"InterpretedStatus",
	"JobStatusTracker",
	"OutcomeCallback",
	"OutcomeDispatcher",
	"PollWaitStrategy",
	"ProgressCallback",
	"StatusClass",
	"StatusInterpreter",
	"TickResult",
	"TrackingAlreadyActiveError",
	"TrackingConfig",
	"TrackingError",
	"TrackingInvalidArgumentError",
	"TrackingService",
	"TrackingServiceConfig",
	"TrackingSession",
	"TrackingSessionNotFoundError",
	"TrackingSessionView",
	"TrackingState",
	"TransportFailure",
	"tracker_validate_config",
	"tracking_classify_status_tag",
	"tracking_classify_transport_error",
]
