from __future__ import annotations

from django.contrib import admin

from .models import Announcement, Content


@admin.register(Content)
class ContentAdmin(admin.ModelAdmin):
    list_display = ("name", "level", "title", "parent", "position", "is_deleted")
    search_fields = ("name", "title")
    list_filter = ("level", "is_deleted")

    def get_queryset(self, request):
        return Content.all_objects.select_related("parent")


@admin.register(Announcement)
class AnnouncementAdmin(admin.ModelAdmin):
    list_display = ("title", "is_published", "published_at", "created_by", "is_deleted")
    list_filter = ("is_published", "is_deleted")
    readonly_fields = ("is_published", "published_at", "created_by", "created_at", "updated_at")

    def get_queryset(self, request):
        return Announcement.all_objects.select_related("created_by")
