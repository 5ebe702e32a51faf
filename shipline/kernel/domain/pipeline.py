"""Pipeline definition: declared parameters, credential scopes and ordered stages.

Every reference a stage makes is checked here, at definition time:

- ``${name}`` placeholders must name a declared required parameter or a value
  exported by an earlier stage
- credential scopes must be declared under ``credentials``
- ``needs`` may only point at earlier stages
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shipline.kernel.domain.stage import StageDefinition
from shipline.kernel.exceptions import PipelineDefinitionError
from shipline.kernel.templating import find_references

_ENV_VAR_NAME = r"^[A-Za-z_][A-Za-z0-9_]*$"


class ParameterSpec(BaseModel):
    """A run parameter supplied at invocation time."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_.-]*$")
    description: str = ""
    required: bool = True


class CredentialSpec(BaseModel):
    """A named credential reference.

    Attributes
    ----------
    bindings : dict[str, str]
        Environment variable name → secret key in the secret store. The
        resolved values are exposed only to the owning stage's process
        environment.
    login : tuple[str, ...]
        Optional command run with the bindings when the scope is acquired
        (e.g. a registry login reading the password from the environment).
    logout : tuple[str, ...]
        Optional command run unconditionally when the scope is released.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    bindings: dict[str, str] = Field(min_length=1)
    description: str = ""
    login: tuple[str, ...] = ()
    logout: tuple[str, ...] = ()

    @field_validator("bindings")
    @classmethod
    def _valid_env_names(cls, value: dict[str, str]) -> dict[str, str]:
        for env_var in value:
            if not re.match(_ENV_VAR_NAME, env_var):
                raise ValueError(f"'{env_var}' is not a valid environment variable name")
        return value


class PipelineDefinition(BaseModel):
    """Immutable pipeline: parameters, credential scopes and stages in order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    parameters: tuple[ParameterSpec, ...] = ()
    credentials: dict[str, CredentialSpec] = Field(default_factory=dict)
    stages: tuple[StageDefinition, ...] = Field(min_length=1)

    @field_validator("stages")
    @classmethod
    def _assign_ordinals(cls, stages: tuple[StageDefinition, ...]) -> tuple[StageDefinition, ...]:
        return tuple(
            stage if stage.ordinal == index else stage.model_copy(update={"ordinal": index})
            for index, stage in enumerate(stages)
        )

    @model_validator(mode="after")
    def _check_references(self) -> PipelineDefinition:
        parameter_names = [p.name for p in self.parameters]
        if len(set(parameter_names)) != len(parameter_names):
            raise PipelineDefinitionError("parameters", "parameter names must be unique")
        required = {p.name for p in self.parameters if p.required}
        optional = {p.name for p in self.parameters if not p.required}

        seen: set[str] = set()
        exported: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise PipelineDefinitionError(stage.name, "duplicate stage name")

            for need in stage.needs:
                if need not in seen:
                    raise PipelineDefinitionError(
                        stage.name, f"needs '{need}', which is not an earlier stage"
                    )

            for scope in stage.credentials:
                if scope not in self.credentials:
                    raise PipelineDefinitionError(
                        stage.name, f"references undeclared credential scope '{scope}'"
                    )

            for template in stage.templates():
                for ref in find_references(template):
                    if ref in optional:
                        raise PipelineDefinitionError(
                            stage.name,
                            f"references optional parameter '{ref}'; "
                            "parameters used by stages must be required",
                        )
                    if ref not in required and ref not in exported:
                        raise PipelineDefinitionError(
                            stage.name, f"references undeclared parameter '{ref}'"
                        )

            for export in stage.exports:
                if export in required or export in optional:
                    raise PipelineDefinitionError(
                        stage.name, f"export '{export}' would shadow a parameter"
                    )
                if export in exported:
                    raise PipelineDefinitionError(
                        stage.name, f"export '{export}' is already exported by an earlier stage"
                    )

            seen.add(stage.name)
            exported.update(stage.exports)
        return self

    @property
    def required_parameters(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def stage(self, name: str) -> StageDefinition:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "parameters": self.required_parameters,
            "credentials": sorted(self.credentials),
            "stages": [
                {"name": s.name, "policy": str(s.policy), "kind": s.action.kind}
                for s in self.stages
            ],
        }
