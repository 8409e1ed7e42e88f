from rest_framework import serializers
from .models import Country, fold_name

UPDATABLE_FIELDS = [
    'name', 'capital', 'region', 'population',
    'currency_code', 'exchange_rate', 'estimated_gdp',
    'flag_url', 'last_refreshed_at'
]


class CountrySerializer(serializers.ModelSerializer):
    class Meta:
        model = Country
        fields = ['id'] + UPDATABLE_FIELDS


class CountryUpdateSerializer(serializers.ModelSerializer):
    """
    Partial update of a stored country.

    Any subset of the country fields may be sent. Unlike refresh-time
    ingestion, population and the rate/GDP pairing are not checked here.
    """

    class Meta:
        model = Country
        fields = UPDATABLE_FIELDS

    def to_internal_value(self, data):
        if not isinstance(data, dict) or not data:
            raise serializers.ValidationError({"body": "No update fields provided"})
        unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
        if unknown:
            raise serializers.ValidationError({key: "is not an updatable field" for key in unknown})
        return super().to_internal_value(data)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("is required")
        clash = Country.objects.filter(name_key=fold_name(value))
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            raise serializers.ValidationError("another country already uses this name")
        return value


class StatusSerializer(serializers.Serializer):
    total_countries = serializers.IntegerField()
    last_refreshed_at = serializers.DateTimeField(allow_null=True)


class RefreshResultSerializer(serializers.Serializer):
    total_countries = serializers.IntegerField()
    stored = serializers.IntegerField()
    skipped = serializers.IntegerField()
    last_refreshed_at = serializers.DateTimeField()
    image_generated = serializers.BooleanField()
    duration_seconds = serializers.FloatField()
