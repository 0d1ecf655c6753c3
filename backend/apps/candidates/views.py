# apps/candidates/views.py

from rest_framework import viewsets, mixins, filters, status
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.enums import Platform
from apps.common.exceptions import ConfigurationError

from .models import Candidate
from .serializers import (
    CandidateSerializer, CandidateListSerializer, ImportHandlesSerializer,
    ProspectSerializer, ApplicationSerializer,
)
from .selectors import (
    search_candidates, get_enrichment_stats, get_prospects,
    get_applications, get_records_with_detected_duplicates,
)
from .services import import_handles, approve_prospect, reject_prospect, submit_application, create_prospect


class CandidateViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoints for admitted candidates.

    list:       GET    /api/v1/candidates/
    retrieve:   GET    /api/v1/candidates/{id}/
    import:     POST   /api/v1/candidates/import/
    stats:      GET    /api/v1/candidates/stats/
    duplicates: GET    /api/v1/candidates/duplicates/
    """

    queryset = Candidate.objects.filter(is_active=True)
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ["created_at", "follower_count", "last_enriched_at", "handle"]
    ordering = ["-created_at"]

    def get_serializer_class(self):
        if self.action == "list":
            return CandidateListSerializer
        return CandidateSerializer

    def get_queryset(self):
        """Apply filters from query params."""
        params = self.request.query_params
        has_data = params.get("has_data")
        return search_candidates(
            query=params.get("search"),
            country=params.get("country"),
            platform=params.get("platform"),
            source=params.get("source"),
            has_data={"true": True, "false": False}.get((has_data or "").lower()),
        )

    @action(detail=False, methods=["post"], url_path="import")
    def bulk_import(self, request):
        serializer = ImportHandlesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = import_handles(**serializer.validated_data)
        except ConfigurationError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        params = request.query_params
        stats = get_enrichment_stats(
            country=params.get("country") or None,
            platform=params.get("platform") or Platform.INSTAGRAM,
        )
        return Response(stats)

    @action(detail=False, methods=["get"])
    def duplicates(self, request):
        """Prospects and applications flagged by duplicate detection."""
        flagged = get_records_with_detected_duplicates()
        return Response({
            "prospects": ProspectSerializer(flagged["prospects"][:100], many=True).data,
            "applications": ApplicationSerializer(flagged["applications"][:100], many=True).data,
        })


class ProspectViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = ProspectSerializer

    def get_queryset(self):
        params = self.request.query_params
        return get_prospects(status=params.get("status"), country=params.get("country"))

    def perform_create(self, serializer):
        serializer.instance = create_prospect(**serializer.validated_data)

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        prospect = self.get_object()
        try:
            candidate = approve_prospect(prospect)
        except ConfigurationError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        prospect.refresh_from_db()
        return Response({
            "prospect": ProspectSerializer(prospect).data,
            "candidate": CandidateSerializer(candidate).data if candidate else None,
        })

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        prospect = reject_prospect(self.get_object(), notes=request.data.get("notes", ""))
        return Response(ProspectSerializer(prospect).data)


class ApplicationViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = ApplicationSerializer

    def get_queryset(self):
        return get_applications(status=self.request.query_params.get("status"))

    def perform_create(self, serializer):
        serializer.instance = submit_application(**serializer.validated_data)
