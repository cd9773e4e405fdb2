"""Runtime settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _key_field(name: str):
    # 同时接受 CHATRELAY_ 前缀与托管平台常用的裸变量名（如 GEMINI_API_KEY）
    return Field(default="", validation_alias=AliasChoices(f"CHATRELAY_{name}", name))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHATRELAY_", env_file=".env", extra="ignore", populate_by_name=True)

    app_name: str = "ChatRelay"
    env: str = "dev"
    log_level: str = "info"
    host: str = "127.0.0.1"
    port: int = 18080
    # 空字符串时只输出到 stderr（只读文件系统部署）
    log_file: str = "logs/chatrelay.log"
    log_file_max_bytes: int = 10 * 1024 * 1024
    log_file_backup_count: int = 5

    upstream_timeout_seconds: float = 60.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20
    # 上游错误正文截断长度，保持错误信封足够小
    upstream_error_detail_chars: int = 500

    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_default_model: str = "gemini-1.5-flash"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_default_model: str = "gpt-4o"
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_default_model: str = "deepseek-chat"
    qwen_base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    qwen_default_model: str = "qwen-vl-plus"
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_default_model: str = "llama3.2"

    gemini_api_key: str = _key_field("GEMINI_API_KEY")
    openai_api_key: str = _key_field("OPENAI_API_KEY")
    deepseek_api_key: str = _key_field("DEEPSEEK_API_KEY")
    qwen_api_key: str = _key_field("QWEN_API_KEY")
    ollama_api_key: str = _key_field("OLLAMA_API_KEY")

    # 非空时作为 system 轮次注入（Gemini 走 systemInstruction）
    system_prompt: str = ""
    # True 时图片 data URL 解析失败直接报 400；默认静默降级为纯文本
    strict_attachments: bool = False

    max_request_body_bytes: int = 20_000_000
    # 流式归一化时单帧缓冲上限，超出的帧丢弃并告警
    max_stream_frame_bytes: int = 1_000_000


settings = Settings()
