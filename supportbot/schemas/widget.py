"""
schemas/widget.py
-----------------
Public widget configuration. Only presentation fields are exposed.
"""

from pydantic import BaseModel, ConfigDict, Field


class WidgetConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str
    chatbot_name: str = Field(..., alias="chatbotName")
    welcome_message: str = Field(..., alias="welcomeMessage")
    accent_color: str = Field(..., alias="accentColor")
    features: list[str]
