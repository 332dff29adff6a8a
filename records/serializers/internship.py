import bleach
from rest_framework import serializers

STATUSES = ['pending', 'in_progress', 'completed', 'approved']


class InternshipSerializer(serializers.Serializer):
    """Create payload; with ``partial=True`` also the edit payload."""
    location = serializers.CharField(max_length=255)
    round = serializers.CharField(required=False, allow_blank=True, max_length=64)
    startDate = serializers.DateField(source='start_date')
    endDate = serializers.DateField(source='end_date')
    hoursCompleted = serializers.IntegerField(source='hours_completed', required=False, min_value=0, max_value=10000)
    totalRequiredHours = serializers.IntegerField(source='total_required_hours', required=False,
                                                  min_value=1, max_value=10000)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=5000)
    userId = serializers.IntegerField(source='user_id', required=False, min_value=1)
    supervisorId = serializers.IntegerField(source='supervisor_id', required=False, min_value=1, allow_null=True)

    def validate_location(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('location is required')
        return v

    def validate(self, attrs):
        for key in ('round', 'notes'):
            if key in attrs:
                attrs[key] = bleach.clean(attrs[key].strip(), strip=True)
        start, end = attrs.get('start_date'), attrs.get('end_date')
        if start and end and end < start:
            raise serializers.ValidationError({'endDate': 'end date is before start date'})
        return attrs


class InternshipStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['in_progress', 'completed'])


class InternshipListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUSES, required=False)
    userId = serializers.IntegerField(source='user_id', required=False, min_value=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)
