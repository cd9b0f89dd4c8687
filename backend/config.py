import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Questions per round
    ROUND_SIZE = int(os.environ.get('ROUND_SIZE', '10'))
    # Per-question countdown by speed mode (seconds)
    FAST_DURATION_SEC = int(os.environ.get('FAST_DURATION_SEC', '10'))
    NORMAL_DURATION_SEC = int(os.environ.get('NORMAL_DURATION_SEC', '20'))
    SLOW_DURATION_SEC = int(os.environ.get('SLOW_DURATION_SEC', '30'))
    # Auto-advance after the answer is revealed (seconds)
    REVEAL_DURATION_SEC = int(os.environ.get('REVEAL_DURATION_SEC', '30'))
    # Skip a card whose image has not loaded within this window (seconds)
    IMAGE_WATCHDOG_SEC = int(os.environ.get('IMAGE_WATCHDOG_SEC', '10'))
    # Fail the round after this many image skips in a row
    IMAGE_SKIP_LIMIT = int(os.environ.get('IMAGE_SKIP_LIMIT', '20'))
    # Card queue: background refill below the low-water mark
    QUEUE_LOW_WATER = int(os.environ.get('QUEUE_LOW_WATER', '6'))
    QUEUE_BATCH_SIZE = int(os.environ.get('QUEUE_BATCH_SIZE', '20'))
    PRELOAD_LOOKAHEAD = int(os.environ.get('PRELOAD_LOOKAHEAD', '8'))
    SUPPLY_ATTEMPTS_PER_SOURCE = int(os.environ.get('SUPPLY_ATTEMPTS_PER_SOURCE', '1'))
    # Comma separated, in fallback order
    CARD_SOURCES = os.environ.get('CARD_SOURCES', 'gbif,inaturalist')
    PROVIDER_TIMEOUT_SEC = int(os.environ.get('PROVIDER_TIMEOUT_SEC', '10'))
    GBIF_API_URL = os.environ.get('GBIF_API_URL', 'https://api.gbif.org/v1/occurrence/search')
    INAT_API_URL = os.environ.get('INAT_API_URL', 'https://api.inaturalist.org/v1/observations')
    # Close a round this long after it is left unwatched or ends (seconds)
    ROUND_ABANDON_GRACE_SEC = int(os.environ.get('ROUND_ABANDON_GRACE_SEC', '5'))
    # Optional: heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
