from fastapi import Request

from chemtrack.services.reporting_mirror_service import ReportingMirror


def get_reporting_mirror(request: Request) -> ReportingMirror:
    return request.app.state.reporting_mirror
