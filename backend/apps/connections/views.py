# apps/connections/views.py

from rest_framework import viewsets, mixins
from rest_framework.decorators import action
from rest_framework.response import Response

from .models import ConnectionEndpoint
from .serializers import ConnectionEndpointSerializer
from .services import get_connection_pool, register_endpoint, reset_endpoint


class ConnectionEndpointViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """
    list:    GET    /api/v1/endpoints/
    create:  POST   /api/v1/endpoints/
    reset:   POST   /api/v1/endpoints/{id}/reset/
    stats:   GET    /api/v1/endpoints/stats/
    """

    queryset = ConnectionEndpoint.objects.all().order_by("id")
    serializer_class = ConnectionEndpointSerializer

    def perform_create(self, serializer):
        row = serializer.save()
        register_endpoint(row)

    @action(detail=True, methods=["post"])
    def reset(self, request, pk=None):
        endpoint = self.get_object()
        row = reset_endpoint(endpoint.id)
        return Response(ConnectionEndpointSerializer(row).data)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(get_connection_pool().get_stats())
