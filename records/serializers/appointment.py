import bleach
from rest_framework import serializers

STATUSES = ['scheduled', 'confirmed', 'completed', 'cancelled', 'no_show']


class AppointmentCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, max_length=5000)
    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')
    studentId = serializers.IntegerField(source='student_id', required=False, min_value=1)
    supervisorId = serializers.IntegerField(source='supervisor_id', required=False, min_value=1)

    def validate_title(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('title is required')
        return v

    def validate(self, attrs):
        if 'description' in attrs:
            attrs['description'] = bleach.clean(attrs['description'].strip(), strip=True)
        if attrs['end_time'] <= attrs['start_time']:
            raise serializers.ValidationError({'endTime': 'appointment must end after it starts'})
        return attrs


class AppointmentRescheduleSerializer(serializers.Serializer):
    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')

    def validate(self, attrs):
        if attrs['end_time'] <= attrs['start_time']:
            raise serializers.ValidationError({'endTime': 'appointment must end after it starts'})
        return attrs


class AppointmentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['confirmed', 'completed', 'cancelled', 'no_show'])


class AppointmentSupervisorSerializer(serializers.Serializer):
    supervisorId = serializers.IntegerField(source='supervisor_id', min_value=1, allow_null=True)


class AppointmentListQuerySerializer(serializers.Serializer):
    """Calendar window on ``start_time``; both bounds inclusive."""
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    patientId = serializers.IntegerField(source='patient_id', required=False, min_value=1)
    status = serializers.ChoiceField(choices=STATUSES, required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)
