import bleach
from rest_framework import serializers


class TreatmentCreateSerializer(serializers.Serializer):
    treatmentType = serializers.CharField(source='treatment_type', max_length=128)
    description = serializers.CharField(required=False, allow_blank=True, max_length=5000)
    # FDI notation: permanent 11-48, primary 51-85
    teethNumbers = serializers.ListField(
        source='teeth_numbers', child=serializers.IntegerField(min_value=11, max_value=85),
        required=False, allow_empty=True,
    )
    priority = serializers.ChoiceField(choices=['low', 'medium', 'high'], required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=['planned', 'in_progress', 'completed'], required=False)
    startDate = serializers.DateField(source='start_date', required=False, allow_null=True)
    endDate = serializers.DateField(source='end_date', required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=5000)
    studentId = serializers.IntegerField(source='student_id', required=False, min_value=1)
    supervisorId = serializers.IntegerField(source='supervisor_id', required=False, min_value=1)

    def validate_treatmentType(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('treatment type is required')
        return v

    def validate(self, attrs):
        for key in ('description', 'notes'):
            if key in attrs:
                attrs[key] = bleach.clean(attrs[key].strip(), strip=True)
        start, end = attrs.get('start_date'), attrs.get('end_date')
        if start and end and end < start:
            raise serializers.ValidationError({'endDate': 'end date is before start date'})
        return attrs


class TreatmentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['planned', 'in_progress', 'completed'])


class TreatmentSupervisorSerializer(serializers.Serializer):
    supervisorId = serializers.IntegerField(source='supervisor_id', min_value=1, allow_null=True)


class TreatmentListQuerySerializer(serializers.Serializer):
    patientId = serializers.IntegerField(source='patient_id', required=False, min_value=1)
    approvalStatus = serializers.ChoiceField(source='approval_status', choices=['pending', 'approved', 'rejected'], required=False)
    status = serializers.ChoiceField(choices=['planned', 'in_progress', 'completed'], required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)
