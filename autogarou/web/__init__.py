__all__ = ["create_app", "run_server"]


def create_app(*args, **kwargs):
    from autogarou.web.server import create_app as _create_app
    return _create_app(*args, **kwargs)


def run_server(host: str = "0.0.0.0", port: int = 8000, config_path=None) -> None:
    from autogarou.web.server import run_server as _run_server
    _run_server(host=host, port=port, config_path=config_path)
