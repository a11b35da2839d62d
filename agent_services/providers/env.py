from agent_services.config import Settings


def build_instance_env(settings: Settings) -> dict[str, str]:
    """Base env var map every new runtime instance starts with."""
    return {
        "OPENCLAW_STATE_DIR": "/app",
        "OPENCLAW_PRIMARY_MODEL": settings.openclaw_primary_model,
        "XMTP_ENV": settings.xmtp_env,
        "CHROMIUM_PATH": "/usr/bin/chromium",
        "POOL_API_KEY": settings.pool_api_key,
        "AGENTMAIL_API_KEY": settings.agentmail_api_key or "",
        "BANKR_API_KEY": settings.bankr_api_key,
        "TELNYX_API_KEY": settings.telnyx_api_key or "",
        "TELNYX_PHONE_NUMBER": settings.telnyx_phone_number,
        "TELNYX_MESSAGING_PROFILE_ID": settings.telnyx_messaging_profile_id,
    }
