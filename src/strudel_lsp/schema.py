from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel


class ParameterDTO(BaseModel):
    label: str
    documentation: str = ""


class SignatureDTO(BaseModel):
    label: str
    documentation: Optional[str] = None
    parameters: List[ParameterDTO] = []


class FunctionDTO(BaseModel):
    name: str
    detail: str = ""
    documentation: str = ""
    signatures: List[SignatureDTO] = []


class EngineDescriptor(BaseModel):
    """Discovery record written by the engine: where it listens and who it is."""

    model_config = {"frozen": True}

    port: int
    pid: int


class SamplesMessage(BaseModel):
    type: Literal["samples"]
    samples: List[str] = []


class BanksMessage(BaseModel):
    type: Literal["banks"]
    banks: List[str] = []


class SoundsMessage(BaseModel):
    type: Literal["sounds"]
    sounds: List[str] = []


class EngineRequest(BaseModel):
    type: Literal["getSamples", "getBanks", "getSounds"]


class ParserErrorDTO(BaseModel):
    message: str = "Unknown parse error"
    location: Optional[Dict[str, Any]] = None
    expected: Optional[List[Any]] = None
    found: Optional[str] = None


class ParserLeafDTO(BaseModel):
    type: str
    source: str
    location: Dict[str, Any]


class ParserResponse(BaseModel):
    id: int
    ok: bool
    leaves: List[ParserLeafDTO] = []
    error: Optional[ParserErrorDTO] = None
