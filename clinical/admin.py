from django.contrib import admin

from .models import Appointment, Dentist, Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['name', 'clinic', 'status', 'created_at']
    list_filter = ['status']
    search_fields = ['name', 'email', 'clinic__name']


@admin.register(Dentist)
class DentistAdmin(admin.ModelAdmin):
    list_display = ['name', 'cro', 'clinic', 'status']
    list_filter = ['status']
    search_fields = ['name', 'cro', 'clinic__name']


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['patient', 'dentist', 'clinic', 'scheduled_at', 'status']
    list_filter = ['status']
    date_hierarchy = 'scheduled_at'
