"""Background workers for recipe image jobs."""

from recipe_easy.workers.arq_tasks import generate_recipe_image, sweep_expired_images

__all__ = ["generate_recipe_image", "sweep_expired_images"]
