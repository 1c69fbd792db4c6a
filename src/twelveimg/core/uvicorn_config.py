import multiprocessing

from twelveimg.core.config import configs


def build_uvicorn_settings(environment: str = configs.ENVIRONMENT) -> dict:
    if environment != "production":
        return {"workers": 1, "reload": True, "timeout_keep_alive": configs.KEEP_ALIVE_SECONDS}

    return {
        "workers": max(1, min(multiprocessing.cpu_count(), configs.SERVER_WORKERS)),
        "backlog": 4096,
        # clients hold a connection across a burst of grant and confirm calls
        "timeout_keep_alive": configs.KEEP_ALIVE_SECONDS,
        "loop": "uvloop",
        "http": "httptools",
        "access_log": True,
        "log_level": configs.LOG_LEVEL.lower(),
    }


uvicorn_settings = build_uvicorn_settings()
