"""Validated, persisted, category-keyed user settings."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import BaseModel, Field, ValidationError

from device_hub.exceptions import PersistenceError, UnknownCategoryError
from device_hub.storage import read_document_async, write_atomic_async

from .app_settings import CATEGORIES, AppSettings, CategoryModel

logger = logging.getLogger(__name__)

SettingsListener = Callable[[str], None]


class FieldError(BaseModel):
    """字段级校验错误"""

    category: str
    field: str = Field(description="字段路径，如 pollingInterval")
    message: str


class UpdateResult(BaseModel):
    """设置更新结果"""

    success: bool
    errors: list[FieldError] = Field(default_factory=list)


def _resolve(category: str) -> tuple[str, type[CategoryModel]]:
    try:
        return CATEGORIES[category]
    except KeyError:
        raise UnknownCategoryError(category) from None


def _to_aliases(model: type[CategoryModel], updates: dict[str, Any]) -> dict[str, Any]:
    """把 snake_case 属性名统一转换为持久化字段名"""
    result: dict[str, Any] = {}
    for key, value in updates.items():
        field = model.model_fields.get(key)
        if field is not None and field.alias:
            key = field.alias
        result[key] = value
    return result


def _field_errors(category: str, error: ValidationError) -> list[FieldError]:
    return [
        FieldError(
            category=category,
            field=".".join(str(part) for part in err["loc"]),
            message=err["msg"],
        )
        for err in error.errors()
    ]


class ConfigStore:
    """设置存储

    每个分类独立校验；更新失败不会影响其他分类，也不会写入无效数据。
    写入按顺序串行执行，内存状态只在持久化成功后替换。
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._settings = AppSettings()
        self._errors: list[FieldError] = []
        self._lock = asyncio.Lock()
        self._listeners: list[SettingsListener] = []

    async def load(self) -> None:
        """从磁盘加载设置，任何错误都回退到默认值"""
        try:
            raw = await read_document_async(self.path)
        except OSError as e:
            logger.warning("读取设置失败，使用默认值: %s", e)
            self._settings = AppSettings()
            return

        if raw is None:
            self._settings = AppSettings()
            return

        try:
            data = yaml.safe_load(raw)
            if not isinstance(data, dict):
                raise ValueError("设置文件格式错误")
            self._settings = AppSettings.model_validate(data)
        except (yaml.YAMLError, ValueError) as e:
            # pydantic.ValidationError 也是 ValueError
            logger.warning("设置文件无效，使用默认值: %s", e)
            self._settings = AppSettings()

    @property
    def settings(self) -> AppSettings:
        return self._settings.model_copy(deep=True)

    def get_category(self, category: str) -> CategoryModel:
        """获取分类设置（始终有效）"""
        attr, _ = _resolve(category)
        return getattr(self._settings, attr).model_copy()

    def validate_field(self, category: str, field: str, value: Any) -> str | None:
        """校验单个字段，返回错误信息；合法时返回 None"""
        attr, model = _resolve(category)
        current = getattr(self._settings, attr).model_dump(by_alias=True)
        candidate = {**current, **_to_aliases(model, {field: value})}
        alias = next(iter(_to_aliases(model, {field: value})))
        try:
            model.model_validate(candidate)
        except ValidationError as e:
            for err in e.errors():
                if alias in err["loc"]:
                    return err["msg"]
            return "校验失败"
        return None

    async def update_category(self, category: str, updates: dict[str, Any]) -> UpdateResult:
        """合并部分更新、校验并持久化"""
        attr, model = _resolve(category)

        async with self._lock:
            current = getattr(self._settings, attr).model_dump(by_alias=True)
            merged = {**current, **_to_aliases(model, updates)}

            try:
                validated = model.model_validate(merged)
            except ValidationError as e:
                errors = _field_errors(category, e)
                self._errors = [err for err in self._errors if err.category != category] + errors
                logger.debug("设置校验失败 %s: %s", category, errors)
                return UpdateResult(success=False, errors=errors)

            new_settings = self._settings.model_copy(update={attr: validated})
            await self._persist(new_settings)

            self._settings = new_settings
            self._errors = [err for err in self._errors if err.category != category]

        self._notify(category)
        return UpdateResult(success=True)

    async def reset_to_defaults(self) -> None:
        """重置为默认设置"""
        async with self._lock:
            defaults = AppSettings()
            await self._persist(defaults)
            self._settings = defaults
            self._errors = []

        for category in CATEGORIES:
            self._notify(category)

    @property
    def errors(self) -> list[FieldError]:
        return list(self._errors)

    def category_errors(self, category: str) -> list[FieldError]:
        return [e for e in self._errors if e.category == category]

    def field_error(self, category: str, field: str) -> str | None:
        for e in self._errors:
            if e.category == category and e.field == field:
                return e.message
        return None

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """订阅设置变化，返回取消订阅函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def _persist(self, settings: AppSettings) -> None:
        content = yaml.safe_dump(
            settings.model_dump(by_alias=True, mode="json"),
            sort_keys=False,
            allow_unicode=True,
        )
        try:
            await write_atomic_async(self.path, content)
        except OSError as e:
            logger.error("保存设置失败: %s", e)
            raise PersistenceError(self.path, e) from e

    def _notify(self, category: str) -> None:
        for listener in list(self._listeners):
            listener(category)
