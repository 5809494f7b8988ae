"""
Schema registry and validation adapter for resource documents

Resource schemas are plain pydantic models. Fields can be flagged as
internal-only or read-only by adding ``internal`` or ``read_only`` to
their JSON schema extras, for example::

    class Course(pydantic.BaseModel):
        title: str
        created_by: Optional[str] = pydantic.Field(None, json_schema_extra={"read_only": True})

Internal fields never leave the system, read-only fields can't be set
by callers. Both are still settable by hooks on the server side.
"""

import logging
from typing import Annotated, Any, Dict, List, Optional, Type, Union

import pydantic
from pydantic.fields import FieldInfo
from pydantic_core import to_jsonable_python

from ..api.base import ConfigurationError, SchemaValidationError


logger = logging.getLogger(__name__)

Document = Dict[str, Any]


def _field_flag(field: FieldInfo, flag: str) -> bool:
    extra = field.json_schema_extra
    return isinstance(extra, dict) and bool(extra.get(flag, False))


class Schema:
    """
    Wrapper around a pydantic model providing validation and sanitization of documents
    """

    def __init__(self, name: str, model: Type[pydantic.BaseModel]):
        if not isinstance(model, type) or not issubclass(model, pydantic.BaseModel):
            raise TypeError(f"Expected pydantic model class, got {model!r}")
        self.name = name
        self.model = model
        self._partial_model: Optional[Type[pydantic.BaseModel]] = None

    def __repr__(self) -> str:
        return f"Schema(name={self.name!r}, model={self.model.__name__})"

    @property
    def partial_model(self) -> Type[pydantic.BaseModel]:
        """
        Return a derived model where required fields may be omitted and unknown keys are kept

        The derived model inherits from the original model, so types, constraints
        and validators still apply to every supplied field. Omitted fields get a
        default of ``None`` that is never validated nor dumped (``exclude_unset``),
        while an explicit ``None`` is only accepted for nullable fields.
        """

        if self._partial_model is None:
            class LaxModel(self.model):
                model_config = pydantic.ConfigDict(extra="allow", populate_by_name=True)

            fields = {}
            for name, field in self.model.model_fields.items():
                if not field.is_required():
                    continue
                annotation = field.annotation
                if field.metadata:
                    annotation = Annotated[(annotation, *field.metadata)]
                aliases = {
                    key: getattr(field, key)
                    for key in ("alias", "validation_alias", "serialization_alias")
                    if getattr(field, key) is not None
                }
                fields[name] = (annotation, pydantic.Field(None, json_schema_extra=field.json_schema_extra, **aliases))
            self._partial_model = pydantic.create_model(f"Partial{self.model.__name__}", __base__=LaxModel, **fields)
        return self._partial_model

    def _flagged_keys(self, flags: List[str]) -> set:
        keys = set()
        for name, field in self.model.model_fields.items():
            if any(_field_flag(field, flag) for flag in flags):
                keys.add(name)
                if field.alias:
                    keys.add(field.alias)
        return keys

    def validate(self, data: Document, ignore_required: bool = False, use_defaults: bool = True) -> Document:
        """
        Validate the document and return the normalized data

        :param data: document that should be validated
        :param ignore_required: switch to validate only supplied fields (lax mode)
        :param use_defaults: switch to fill in defaults for missing fields
        :return: validated document as JSON-compatible dictionary
        :raises SchemaValidationError: when the document does not conform to the schema
        """

        if not isinstance(data, dict):
            raise SchemaValidationError(self.name, [{"loc": (), "msg": f"expected object, got {type(data).__name__}"}])

        model = self.partial_model if ignore_required else self.model
        passthrough = {}
        if ignore_required:
            known = {field.alias or name for name, field in self.model.model_fields.items()}
            passthrough = {k: v for k, v in data.items() if k.startswith(("_", "$")) and k not in known}
            data = {k: v for k, v in data.items() if k not in passthrough}
        try:
            obj = model.model_validate(data)
        except pydantic.ValidationError as exc:
            problems = [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
                for e in exc.errors()
            ]
            raise SchemaValidationError(self.name, problems) from exc

        result = obj.model_dump(mode="json", by_alias=True, exclude_unset=not use_defaults or ignore_required)
        if ignore_required and use_defaults:
            for name, field in self.model.model_fields.items():
                key = field.alias or name
                if key not in result and not field.is_required():
                    result[key] = to_jsonable_python(field.get_default(call_default_factory=True))
        if ignore_required:
            for key, value in (obj.model_extra or {}).items():
                result.setdefault(key, to_jsonable_python(value))
            result.update(passthrough)
        return result

    def protected_keys(self) -> set:
        """
        Return the keys of internal and read-only fields, which callers can never set directly
        """

        return self._flagged_keys(["internal", "read_only"])

    def sanitize(self, data: Union[Document, List[Document]], strip_read_only: bool = False):
        """
        Remove fields the caller should never see or set directly from a document or a list of documents

        Internal fields are always removed, read-only fields only if requested.
        """

        flags = ["internal", "read_only"] if strip_read_only else ["internal"]
        stripped = self._flagged_keys(flags)
        if isinstance(data, list):
            return [self.sanitize(item, strip_read_only) for item in data]
        if not isinstance(data, dict):
            return data
        return {k: v for k, v in data.items() if k not in stripped}

    def json_schema(self) -> Dict[str, Any]:
        return self.model.model_json_schema(by_alias=True)


class SchemaRegistry:
    """
    Collection of named schemas shared by all resource modules of an application
    """

    def __init__(self):
        self._schemas: Dict[str, Schema] = {}

    def __contains__(self, item: str) -> bool:
        return item in self._schemas

    def add_schema(self, name: str, model: Type[pydantic.BaseModel]) -> Schema:
        if name in self._schemas and self._schemas[name].model is not model:
            logger.warning(f"Schema {name!r} already registered; replacing {self._schemas[name]!r}")
        schema = Schema(name, model)
        self._schemas[name] = schema
        return schema

    def get_schema(self, name: str) -> Schema:
        try:
            return self._schemas[name]
        except KeyError:
            raise ConfigurationError(f"Unknown schema {name!r}") from None


class Validator:
    """
    Async adapter used by the request pipeline to talk to the schema registry

    All methods accept a missing schema name, in which case the data
    is passed through unchanged, since resources without schema exist.
    """

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    async def get_schema(self, schema_name: Optional[str]) -> Optional[Schema]:
        if schema_name is None:
            return None
        return self.registry.get_schema(schema_name)

    async def validate(
            self,
            schema_name: Optional[str],
            data: Document,
            ignore_required: bool = False,
            use_defaults: bool = True
    ) -> Document:
        schema = await self.get_schema(schema_name)
        if schema is None:
            return data
        return schema.validate(data, ignore_required=ignore_required, use_defaults=use_defaults)

    async def validate_lax(self, schema_name: Optional[str], data: Document) -> Document:
        return await self.validate(schema_name, data, ignore_required=True, use_defaults=False)

    async def protected_keys(self, schema_name: Optional[str]) -> set:
        schema = await self.get_schema(schema_name)
        if schema is None:
            return set()
        return schema.protected_keys()

    async def sanitize(self, schema_name: Optional[str], data: Any, strip_read_only: bool = False):
        schema = await self.get_schema(schema_name)
        if schema is None:
            return data
        return schema.sanitize(data, strip_read_only)
