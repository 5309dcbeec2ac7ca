from rest_framework import serializers

from .models import Appointment, Dentist, Patient


class PatientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Patient
        fields = ['id', 'name', 'email', 'phone', 'status', 'created_at']
        read_only_fields = ['id', 'created_at']


class DentistSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dentist
        fields = ['id', 'name', 'cro', 'status', 'created_at']
        read_only_fields = ['id', 'created_at']


class AppointmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Appointment
        fields = ['id', 'patient', 'dentist', 'scheduled_at', 'status', 'notes', 'created_at']
        read_only_fields = ['id', 'created_at']

    def validate(self, attrs):
        clinic = self.context['request'].user.clinic
        for key in ('patient', 'dentist'):
            related = attrs.get(key)
            if related is not None and related.clinic_id != getattr(clinic, 'id', None):
                raise serializers.ValidationError({key: 'Must belong to your clinic.'})
        return attrs
