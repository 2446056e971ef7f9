"""
Configuration settings for FitSpo Feed Service
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "FitSpo Feed Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8010

    # MongoDB (document store)
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "fitspo"
    POSTS_COLLECTION: str = "posts"
    POST_TAGS_COLLECTION: str = "post_tags"
    NOTIFICATIONS_COLLECTION: str = "notifications"
    USERS_COLLECTION: str = "users"

    # Redis (for caching derived hashtag lists)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 2
    REDIS_PASSWORD: str = ""
    REDIS_ENABLED: bool = True

    # S3/MinIO Storage
    S3_BUCKET_NAME: str = "fitspo-media"
    S3_ENDPOINT_URL: str = "http://localhost:9000"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    MEDIA_BASE_URL: str = "http://localhost:9000/fitspo-media"
    IMAGE_QUALITY: int = 80
    SIGNED_URL_EXPIRATION: int = 3600

    # Search index (Algolia-compatible REST API)
    SEARCH_ENABLED: bool = True
    ALGOLIA_APP_ID: str = ""
    ALGOLIA_API_KEY: str = ""
    ALGOLIA_POSTS_INDEX: str = "posts"
    SEARCH_HITS_PER_PAGE: int = 40

    # Weather lookup
    OPENWEATHER_URL: str = "https://api.openweathermap.org/data/2.5/weather"
    OPENWEATHER_API_KEY: str = ""

    # Auth
    JWT_SECRET_KEY: str = "your-secret-key-change-this-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_ENABLED: bool = False
    KAFKA_TOPIC_POST_CREATED: str = "post.created"
    KAFKA_TOPIC_POST_LIKED: str = "post.liked"
    KAFKA_TOPIC_POST_DELETED: str = "post.deleted"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Feed pagination
    DEFAULT_PAGE_SIZE: int = 12
    MAX_PAGE_SIZE: int = 100

    # Hot posts ranking
    HOT_RANK_TTL_SECONDS: int = 300  # 5 minutes
    HOT_RANK_TOP_N: int = 10
    HOT_CANDIDATE_PAGE_SIZE: int = 50
    HOT_CANDIDATE_MAX_PAGES: int = 3

    # Explore
    DISPLAY_TIMEZONE: str = "UTC"
    TRENDING_TAGS_DAYS: int = 7
    TRENDING_TAGS_LIMIT: int = 12
    TOP_HASHTAGS_LIMIT: int = 20
    CACHE_TTL_TOP_HASHTAGS: int = 600  # 10 minutes

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
