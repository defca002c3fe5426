"""
Parent notification templates
"""
import re
from typing import Optional, Dict, Any
from pydantic import BaseModel

from ..common.models import Channel, Urgency, NotificationPayload


class TemplateNotFoundError(Exception):
    """Raised when a notification names an unknown template"""
    pass


_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

SMS_MAX_LENGTH = 160


def render(text: str, data: Dict[str, Any]) -> str:
    """Fill `{{name}}` placeholders; missing values render empty"""
    def substitute(match: re.Match) -> str:
        value = data.get(match.group(1))
        return "" if value is None else str(value)
    return _VARIABLE.sub(substitute, text)


class NotificationTemplate(BaseModel):
    id: str
    name: str
    kind: str
    urgency: Urgency
    sms: Optional[str] = None
    email_subject: Optional[str] = None
    email_text: Optional[str] = None
    push_title: Optional[str] = None
    push_body: Optional[str] = None
    url_variable: Optional[str] = None

    def supports(self, channel: Channel) -> bool:
        if channel == Channel.SMS:
            return self.sms is not None
        if channel == Channel.EMAIL:
            return self.email_subject is not None and self.email_text is not None
        return self.push_title is not None and self.push_body is not None

    def payload(
        self,
        channel: Channel,
        data: Dict[str, Any],
        recipient: Optional[str] = None,
        urgency: Optional[Urgency] = None,
        message_id: Optional[str] = None
    ) -> Optional[NotificationPayload]:
        """Render this template for one channel, None if it has no content there"""
        if not self.supports(channel):
            return None

        if channel == Channel.SMS:
            title = self.name
            message = render(self.sms, data)[:SMS_MAX_LENGTH]
        elif channel == Channel.EMAIL:
            title = render(self.email_subject, data)
            message = render(self.email_text, data)
        else:
            title = render(self.push_title, data)
            message = render(self.push_body, data)

        url = data.get(self.url_variable) if self.url_variable else None
        return NotificationPayload(
            title=title,
            message=message,
            url=url,
            recipient=recipient,
            urgency=urgency or self.urgency,
            message_id=message_id,
        )


DEFAULT_TEMPLATES = [
    NotificationTemplate(
        id="captcha_assistance_critical",
        name="Critical CAPTCHA Assistance",
        kind="captcha",
        urgency=Urgency.CRITICAL,
        sms=(
            "🚨 URGENT: CAPTCHA detected for {{provider_name}}! Your child is in position "
            "{{queue_position}}. Solve now: {{magic_url}} ({{time_remaining}} left)"
        ),
        email_subject="🚨 URGENT: CAPTCHA Challenge - Action Required ({{time_remaining}} left)",
        email_text=(
            "A CAPTCHA challenge was detected during your child's registration for "
            "{{provider_name}}. You are in queue position {{queue_position}} with "
            "{{time_remaining}} remaining. Complete the {{difficulty_description}} challenge: "
            "{{magic_url}}"
        ),
        push_title="CAPTCHA for {{provider_name}}",
        push_body="Solve now to keep your spot ({{time_remaining}} left)",
        url_variable="magic_url",
    ),
    NotificationTemplate(
        id="captcha_assistance_high",
        name="High Priority CAPTCHA Assistance",
        kind="captcha",
        urgency=Urgency.HIGH,
        sms=(
            "⚠️ CAPTCHA help needed for {{provider_name}}! Quick action required: "
            "{{magic_url}} (Est. {{estimated_time}})"
        ),
        email_subject="⚠️ CAPTCHA Challenge - Help Needed for {{provider_name}}",
        email_text=(
            "CAPTCHA challenge detected. Please help: {{magic_url}}\n\n"
            "{{help_context}} Estimated time needed: {{estimated_time}}"
        ),
        push_title="CAPTCHA help needed",
        push_body="{{provider_name}} needs you (Est. {{estimated_time}})",
        url_variable="magic_url",
    ),
    NotificationTemplate(
        id="approval_form_completion",
        name="Form Completion Approval",
        kind="approval",
        urgency=Urgency.MEDIUM,
        sms="📝 {{title}} - Your approval needed: {{action_url}} (Expires: {{expires_at}})",
        email_subject="Approval Required: {{title}}",
        email_text=(
            "{{description}} Please approve: {{action_url}}\n\n"
            "This approval expires: {{expires_at}} ({{time_remaining}} remaining)"
        ),
        push_title="Approval required",
        push_body="{{title}} (expires {{expires_at}})",
        url_variable="action_url",
    ),
    NotificationTemplate(
        id="approval_captcha_solving",
        name="CAPTCHA Solving Approval",
        kind="approval",
        urgency=Urgency.HIGH,
        sms="🔓 {{title}} - Please solve: {{action_url}} (Expires: {{expires_at}})",
        email_subject="Action Required: {{title}}",
        email_text="{{description}} Please solve the challenge: {{action_url}}",
        push_title="CAPTCHA waiting",
        push_body="{{title}} ({{time_remaining}} left)",
        url_variable="action_url",
    ),
    NotificationTemplate(
        id="approval_payment_confirmation",
        name="Payment Confirmation Approval",
        kind="approval",
        urgency=Urgency.HIGH,
        sms="💳 {{title}} - Confirm payment: {{action_url}} (Expires: {{expires_at}})",
        email_subject="Payment Confirmation Required: {{title}}",
        email_text=(
            "{{description}} Please confirm payment: {{action_url}}\n\n"
            "This approval expires: {{expires_at}} ({{time_remaining}} remaining)"
        ),
        push_title="Confirm payment",
        push_body="{{title}} (expires {{expires_at}})",
        url_variable="action_url",
    ),
    NotificationTemplate(
        id="barrier_upcoming",
        name="Upcoming Step",
        kind="barrier",
        urgency=Urgency.MEDIUM,
        sms="⏳ Heads up: {{barrier_label}} coming up in about 2 mins during {{stage_label}}. Stay close to your phone.",
        email_subject="Heads up: {{barrier_label}} coming up",
        email_text=(
            "Your registration will reach a {{barrier_label}} step ({{stage_label}}) in about "
            "2 minutes. {{description}} Estimated time: {{estimated_minutes}} min."
        ),
        push_title="{{barrier_label}} coming up",
        push_body="{{stage_label}}: be ready in about 2 mins",
    ),
    NotificationTemplate(
        id="barrier_now",
        name="Step Reached",
        kind="barrier",
        urgency=Urgency.HIGH,
        sms="👋 Registration reached {{barrier_label}} ({{stage_label}}). {{description}}",
        email_subject="Action may be needed: {{barrier_label}}",
        email_text=(
            "Your registration has reached the {{barrier_label}} step ({{stage_label}}). "
            "{{description}}"
        ),
        push_title="{{barrier_label}} now",
        push_body="{{description}}",
    ),
    NotificationTemplate(
        id="barrier_urgent",
        name="Urgent Step Ahead",
        kind="barrier",
        urgency=Urgency.HIGH,
        sms="⚠️ {{barrier_label}} very likely during {{stage_label}}. Please stay available for the next {{total_minutes}} mins.",
        email_subject="⚠️ Please stay available: {{barrier_label}} expected",
        email_text=(
            "We expect a {{barrier_label}} step during {{stage_label}} that needs you. "
            "{{description}} Please stay available for the next {{total_minutes}} minutes."
        ),
        push_title="Stay available",
        push_body="{{barrier_label}} expected during {{stage_label}}",
    ),
    NotificationTemplate(
        id="engagement_reminder",
        name="Reminder",
        kind="reminder",
        urgency=Urgency.MEDIUM,
        sms="⏰ Reminder: we're still waiting on you. {{action_url}}",
        email_subject="Reminder: your response is needed",
        email_text="We sent you a request a moment ago and are still waiting. {{action_url}}",
        push_title="Still waiting on you",
        push_body="Tap to respond",
        url_variable="action_url",
    ),
    NotificationTemplate(
        id="escalation",
        name="Escalation",
        kind="escalation",
        urgency=Urgency.CRITICAL,
        sms="🚨 No response yet and registration is at risk. Act now: {{action_url}}",
        email_subject="🚨 Registration at risk: response needed now",
        email_text="We have not heard back and your registration may be lost. {{action_url}}",
        push_title="Registration at risk",
        push_body="Respond now to keep your spot",
        url_variable="action_url",
    ),
]


class TemplateRegistry:
    def __init__(self, templates: Optional[list] = None):
        self._templates = {t.id: t for t in (templates or DEFAULT_TEMPLATES)}

    def get(self, template_id: str) -> NotificationTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    def add(self, template: NotificationTemplate):
        self._templates[template.id] = template

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates


# ========================================
# Formatting helpers for template data
# ========================================

PROVIDER_NAMES = {
    "ymca": "YMCA",
    "jackrabbit_class": "JackRabbit Class",
    "camp_brain": "CampBrain",
    "activeNet": "ActiveNet",
}

DIFFICULTY_DESCRIPTIONS = {
    "easy": "Quick checkbox verification",
    "medium": "Image selection challenge",
    "hard": "Complex puzzle solving",
}

SOLUTION_TIMES = {
    "easy": "30 seconds",
    "medium": "1-2 minutes",
    "hard": "2-5 minutes",
}

PRIORITY_URGENCY = {
    "low": Urgency.LOW,
    "normal": Urgency.MEDIUM,
    "high": Urgency.HIGH,
    "urgent": Urgency.CRITICAL,
}


def format_provider_name(provider: str) -> str:
    return PROVIDER_NAMES.get(provider) or provider.replace("_", " ", 1).upper()


def format_time_remaining(ms: float) -> str:
    minutes = int(ms // 60000)
    if minutes < 1:
        return "less than 1 min"
    if minutes == 1:
        return "1 min"
    if minutes < 60:
        return f"{minutes} mins"
    return f"{minutes // 60}h {minutes % 60}m"


def difficulty_description(difficulty: str) -> str:
    return DIFFICULTY_DESCRIPTIONS.get(difficulty, "Standard verification")


def estimated_solution_time(difficulty: str) -> str:
    return SOLUTION_TIMES.get(difficulty, "1-2 minutes")


def map_priority_to_urgency(priority: str) -> Urgency:
    return PRIORITY_URGENCY.get(priority, Urgency.MEDIUM)
