"""
CampRush camp registration automation

1. Open watcher (camprush.watcher)
   - Polls provider pages on an adaptive schedule
   - Creates registrations the moment signup opens

2. Barrier planner (camprush.planner)
   - Predicts CAPTCHAs, logins, uploads and payment steps per provider
   - Optionally enriched by a live page snapshot and an LLM

3. Escalation (camprush.escalation)
   - Reaches parents over SMS, email or push when a human is needed
   - Falls back and escalates when nobody answers
"""
from .common.config import Config, load_config

__version__ = "1.0.0"

__all__ = [
    "Config",
    "load_config",
]
