from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "CLUSTERWMS_"}

    # Clustering
    clustering_spec: str = "zhang"
    overlap: bool = False  # allow concurrently active groups
    plimit: bool = False  # fail instead of clamping when a level exceeds the host count

    # Reservations
    cores_per_node: int = 1
    execution_time_fudge_factor: float = 1.1

    # Admission gates
    max_ongoing_levels: int = 2

    # Ratio search
    leeway_max_requeries: int = 1

    # API
    api_prefix: str = "/api/v1"

    # Logging
    log_level: str = "INFO"
