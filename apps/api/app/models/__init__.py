from app.ai.models import AiRequestLog
from app.communications.models import ConversationThread, Message
from app.crm.models import Activity, Appointment, Lead, Task
from app.dealerships.models import Dealership, Invitation, Membership
from app.identity.models import User
from app.integrations.models import Integration, IntegrationEvent
from app.models.audit import AuditLog, EventLog

__all__ = [
	"AiRequestLog",
	"Activity",
	"Appointment",
	"AuditLog",
	"ConversationThread",
	"Dealership",
	"EventLog",
	"Integration",
	"IntegrationEvent",
	"Invitation",
	"Lead",
	"Membership",
	"Message",
	"Task",
	"User",
]
