"""A configured bot bound to its platform account and language model."""

from dataclasses import dataclass

from ..core.config import BotConfig
from ..llm.language_model import LanguageModel
from ..platform.client import BotAccount


@dataclass
class Bot:
    config: BotConfig
    account: BotAccount
    llm: LanguageModel

    @property
    def user_id(self) -> str:
        return self.account.user_id

    @property
    def username(self) -> str:
        return self.account.username

    @property
    def display_name(self) -> str:
        return self.config.display_name

    @property
    def model_name(self) -> str:
        return self.config.service.default_model or self.llm.get_default_config().model
