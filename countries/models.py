from django.db import models


def fold_name(name):
    """Case-folded form of a country name, used for every name match."""
    return name.strip().casefold()


class Country(models.Model):
    name = models.CharField(max_length=200)
    # name_key: case-folded name; the natural key, so lookups never depend on
    # the database's own case folding (SQLite only folds ASCII)
    name_key = models.CharField(max_length=200, unique=True, editable=False)
    capital = models.CharField(max_length=200, null=True, blank=True)
    region = models.CharField(max_length=100, null=True, blank=True)
    population = models.FloatField()
    # currency_code: first currency listed by the source, null if none
    currency_code = models.CharField(max_length=10, null=True, blank=True)
    # exchange_rate: null when the source has no rate for currency_code
    exchange_rate = models.FloatField(null=True, blank=True)
    # estimated_gdp: null whenever exchange_rate is null or zero
    estimated_gdp = models.FloatField(null=True, blank=True)
    flag_url = models.URLField(max_length=500, null=True, blank=True)
    last_refreshed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name_plural = "countries"
        ordering = ["name"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name_key = fold_name(self.name)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "name" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"name_key"}
        super().save(*args, **kwargs)


class RefreshStatus(models.Model):
    """Single-row table holding the time of the last successful refresh."""

    SINGLETON_ID = 1

    last_refreshed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name_plural = "refresh status"

    def __str__(self):
        if self.last_refreshed_at:
            return f"Last refreshed at {self.last_refreshed_at.isoformat()}"
        return "Never refreshed"

    @classmethod
    def load(cls):
        """Return the status row, or None before the first refresh."""
        return cls.objects.filter(pk=cls.SINGLETON_ID).first()

    @classmethod
    def touch(cls, timestamp):
        status, _ = cls.objects.update_or_create(
            pk=cls.SINGLETON_ID, defaults={"last_refreshed_at": timestamp}
        )
        return status
