# apps/runs/views.py

from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.exceptions import ConfigurationError, RunStateError
from apps.crawler.services import start_discovery_run, start_enrichment_batch

from .serializers import (
    AcquisitionRunSerializer, AcquisitionRunListSerializer,
    AcquisitionAttemptSerializer, StartEnrichmentSerializer,
)
from .selectors import list_runs, get_run_status, get_attempts_for_run
from .services import cancel_run


class AcquisitionRunViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoints for discovery and enrichment runs.

    list:       GET    /api/v1/runs/?run_type=&status=
    retrieve:   GET    /api/v1/runs/{id}/
    status:     GET    /api/v1/runs/{id}/status/
    attempts:   GET    /api/v1/runs/{id}/attempts/?status=
    cancel:     POST   /api/v1/runs/{id}/cancel/
    discovery:  POST   /api/v1/runs/discovery/
    enrichment: POST   /api/v1/runs/enrichment/
    """

    def get_queryset(self):
        params = self.request.query_params
        return list_runs(run_type=params.get("run_type"), status=params.get("status"))

    def get_serializer_class(self):
        if self.action == "list":
            return AcquisitionRunListSerializer
        return AcquisitionRunSerializer

    @action(detail=True, methods=["get"], url_path="status")
    def run_status(self, request, pk=None):
        run = self.get_object()
        return Response(get_run_status(run.id, include_attempts=True))

    @action(detail=True, methods=["get"])
    def attempts(self, request, pk=None):
        run = self.get_object()
        attempts = get_attempts_for_run(run.id, status=request.query_params.get("status"))
        page = self.paginate_queryset(attempts)
        if page is not None:
            return self.get_paginated_response(AcquisitionAttemptSerializer(page, many=True).data)
        return Response(AcquisitionAttemptSerializer(attempts, many=True).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        run = self.get_object()
        try:
            run = cancel_run(run.id)
        except RunStateError as e:
            return Response({"error": str(e)}, status=status.HTTP_409_CONFLICT)
        return Response(AcquisitionRunSerializer(run).data)

    @action(detail=False, methods=["post"])
    def discovery(self, request):
        try:
            run = start_discovery_run(request.data, triggered_by="api")
        except ConfigurationError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {"message": "Discovery run started", "run": AcquisitionRunSerializer(run).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["post"])
    def enrichment(self, request):
        serializer = StartEnrichmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            run = start_enrichment_batch(triggered_by="api", **serializer.validated_data)
        except ConfigurationError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {
                "message": "Enrichment batch started",
                "candidate_count": len(run.config.get("candidate_ids", [])),
                "run": AcquisitionRunSerializer(run).data,
            },
            status=status.HTTP_201_CREATED,
        )
