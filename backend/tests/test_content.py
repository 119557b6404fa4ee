"""Tests pour apps/content/services/publication.py"""
import pytest

from apps.content.models import Announcement, Content
from apps.content.services import publication
from apps.notifications.models import Notification
from core.exceptions import AuthorizationError, InvalidStateError, ValidationError


@pytest.fixture
def programme(admin_identity):
    return publication.create_content(
        admin_identity, level=Content.Level.PROGRAMME, name="P1", title="Programme de solidarité"
    )


@pytest.mark.django_db
class TestContent:
    """Arborescence programme > chapitre > sous-chapitre > article"""

    def test_tree(self, admin_identity, programme):
        chapitre = publication.create_content(
            admin_identity, level="chapitre", name="C1", title="Éligibilité", parent=programme
        )
        sous_chapitre = publication.create_content(
            admin_identity, level="sous_chapitre", name="SC1", title="Ressources", parent=chapitre
        )
        publication.create_content(
            admin_identity, level="article", name="A1", title="Plafond", text="...", parent=sous_chapitre
        )

        tree = publication.content_tree()

        assert len(tree) == 1
        assert tree[0]["name"] == "P1"
        assert tree[0]["children"][0]["children"][0]["children"][0]["name"] == "A1"

    def test_wrong_parent_level(self, admin_identity, programme):
        with pytest.raises(ValidationError) as excinfo:
            publication.create_content(admin_identity, level="article", name="A", title="A", parent=programme)
        assert "parent" in excinfo.value.details

    def test_programme_without_parent_only(self, admin_identity, programme):
        with pytest.raises(ValidationError):
            publication.create_content(admin_identity, level="chapitre", name="C", title="C")
        with pytest.raises(ValidationError):
            publication.create_content(admin_identity, level="programme", name="P", title="P", parent=programme)

    def test_only_admin_edits(self, case_worker):
        with pytest.raises(AuthorizationError):
            publication.create_content(case_worker, level="programme", name="P", title="P")

    def test_update(self, admin_identity, programme):
        content = publication.update_content(programme, admin_identity, title="Nouveau titre", position=2)
        assert Content.objects.get(pk=content.pk).title == "Nouveau titre"
        with pytest.raises(ValidationError):
            publication.update_content(programme, admin_identity, is_deleted=True)

    def test_delete_cascades_softly(self, admin_identity, programme):
        chapitre = publication.create_content(
            admin_identity, level="chapitre", name="C1", title="Chapitre", parent=programme
        )
        publication.delete_content(programme, admin_identity)

        assert not Content.objects.filter(pk__in=[programme.pk, chapitre.pk]).exists()
        assert Content.all_objects.filter(pk=chapitre.pk, is_deleted=True).exists()
        assert publication.content_tree() == []


@pytest.mark.django_db
class TestAnnouncements:
    """Annonces ciblées par rôle"""

    def test_publish_notifies_target_roles(self, case_worker, citizen, other_citizen, finance_manager):
        announcement = publication.create_announcement(
            case_worker, title="Permanence", body="Permanence samedi matin.", target_roles=["user"]
        )

        result = publication.publish(announcement, case_worker)

        assert result["recipients"] == 2
        assert result["announcement"].is_published
        assert result["announcement"].published_at is not None
        recipients = set(
            Notification.objects.filter(related_announcement=announcement).values_list("recipient_id", flat=True)
        )
        assert recipients == {citizen.pk, other_citizen.pk}
        assert not Notification.objects.filter(
            recipient=finance_manager, type=Notification.Type.ANNOUNCEMENT
        ).exists()

    def test_publish_without_target_reaches_everyone(self, case_worker, citizen, admin_identity):
        announcement = publication.create_announcement(case_worker, title="Info", body="Fermeture exceptionnelle.")
        assert publication.publish(announcement, case_worker)["recipients"] == 3

    def test_inactive_identities_excluded(self, case_worker, citizen, other_citizen):
        other_citizen.is_active = False
        other_citizen.save(update_fields=["is_active"])
        announcement = publication.create_announcement(
            case_worker, title="Info", body="Message", target_roles=["user"]
        )
        assert list(publication.audience(announcement)) == [citizen]

    def test_publish_twice_refused(self, case_worker):
        announcement = publication.create_announcement(case_worker, title="Info", body="Message")
        publication.publish(announcement, case_worker)
        with pytest.raises(InvalidStateError):
            publication.publish(announcement, case_worker)

    def test_published_announcement_is_frozen(self, case_worker):
        announcement = publication.create_announcement(case_worker, title="Info", body="Message")
        announcement = publication.publish(announcement, case_worker)["announcement"]
        with pytest.raises(InvalidStateError):
            publication.update_announcement(announcement, case_worker, title="Autre")

    def test_unknown_role_rejected(self, case_worker):
        with pytest.raises(ValidationError):
            publication.create_announcement(case_worker, title="Info", body="Message", target_roles=["ghost"])

    def test_finance_manager_cannot_publish(self, case_worker, finance_manager):
        announcement = publication.create_announcement(case_worker, title="Info", body="Message")
        with pytest.raises(AuthorizationError):
            publication.publish(announcement, finance_manager)

    def test_soft_delete(self, case_worker):
        announcement = publication.create_announcement(case_worker, title="Info", body="Message")
        publication.delete_announcement(announcement, case_worker)
        assert not Announcement.objects.filter(pk=announcement.pk).exists()
        assert Announcement.all_objects.get(pk=announcement.pk).is_deleted
