"""
Configuration management for CampRush
"""
import os
import yaml
from pathlib import Path
from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class StoreConfig(BaseModel):
    path: Optional[str] = "data/camprush.json"


class WatcherConfig(BaseModel):
    user_agent: str = "Mozilla/5.0 (compatible; CampRegistrationBot/1.0)"
    timeout: int = 15
    requests_per_second: float = 2.0
    tick_seconds: int = 60
    default_timezone: str = "America/Chicago"
    time_extraction_min_confidence: float = 0.5


class PlannerConfig(BaseModel):
    use_ai_analysis: bool = True
    cache_ttl_hours: int = 24
    confidence_boost: float = 0.1
    providers_file: Optional[str] = None


class VisionConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4.1-2025-04-14"
    max_completion_tokens: int = 1500
    timeout: int = 60
    capture_screenshot: bool = True


class BrowserConfig(BaseModel):
    headless: bool = True
    slow_mo: int = 0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    navigation_timeout_ms: int = 30000


class EmailConfig(BaseModel):
    enabled: bool = False
    sendgrid_api_key: Optional[str] = None
    from_address: str = "noreply@camprush.app"


class SMSConfig(BaseModel):
    enabled: bool = False
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None


class WebhookConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None


class NotificationsConfig(BaseModel):
    email: EmailConfig = Field(default_factory=EmailConfig)
    sms: SMSConfig = Field(default_factory=SMSConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    console: bool = True


class EscalationConfig(BaseModel):
    checkpoints_seconds: List[float] = Field(default_factory=lambda: [30, 60, 120, 300])
    fallback_checkpoint_seconds: float = 60
    reminder_checkpoint_seconds: float = 120
    stagger_seconds: float = 30
    escalated_fallback_seconds: float = 60
    critical_escalation_delay_ms: int = 60000
    default_escalation_delay_ms: int = 300000
    default_response_rate: float = 0.85
    token_ttl_minutes: int = 15
    tracking_retention_seconds: float = 3600
    assist_base_url: str = "https://camprush.app/assist"
    expected_response_ms: Dict[str, int] = Field(default_factory=lambda: {
        "low": 600000,
        "medium": 300000,
        "high": 180000,
        "critical": 60000,
    })


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "camprush.log"


class Config(BaseModel):
    """Main configuration class"""
    store: StoreConfig = Field(default_factory=StoreConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        env = os.environ
        return cls(
            store=StoreConfig(path=env.get("CAMPRUSH_STORE_PATH", "data/camprush.json")),
            watcher=WatcherConfig(
                default_timezone=env.get("CAMPRUSH_TIMEZONE", "America/Chicago"),
            ),
            vision=VisionConfig(api_key=env.get("OPENAI_API_KEY")),
            notifications=NotificationsConfig(
                email=EmailConfig(
                    enabled=bool(env.get("SENDGRID_API_KEY")),
                    sendgrid_api_key=env.get("SENDGRID_API_KEY"),
                ),
                sms=SMSConfig(
                    enabled=bool(env.get("TWILIO_ACCOUNT_SID")),
                    twilio_account_sid=env.get("TWILIO_ACCOUNT_SID"),
                    twilio_auth_token=env.get("TWILIO_AUTH_TOKEN"),
                    twilio_from_number=env.get("TWILIO_FROM_NUMBER"),
                ),
                webhook=WebhookConfig(
                    enabled=bool(env.get("CAMPRUSH_WEBHOOK_URL")),
                    url=env.get("CAMPRUSH_WEBHOOK_URL"),
                ),
            ),
            logging=LoggingConfig(level=env.get("CAMPRUSH_LOG_LEVEL", "INFO")),
        )

    def to_yaml(self, path: str | Path):
        """Save configuration to YAML file"""
        path = Path(path)
        with open(path, 'w') as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment"""
    if path:
        return Config.from_yaml(path)

    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".camprush" / "config.yaml",
    ]

    for p in default_paths:
        if p.exists():
            return Config.from_yaml(p)

    # Every section has defaults, so the environment alone is enough
    return Config.from_env()
