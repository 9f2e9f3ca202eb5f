"""Resolver that uses the candidates carried on the exposure request."""

from typing import List

from models import EndpointCandidate, ExposureRequest
from plugins.resolvers.base import CandidateResolver


class RequestCandidateResolver(CandidateResolver):
    """Every candidate on the request is a backend."""

    @property
    def name(self) -> str:
        return "request"

    async def resolve(self, request: ExposureRequest) -> List[EndpointCandidate]:
        return list(request.endpoints)
