from __future__ import annotations
import logging
import math
import time
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable
import numpy as np
from tqdm import tqdm
from colour.difference.delta_e import delta_E_CIE1976
from render import Renderer, PillowRenderer
from utils import (
    generate_genome,
    one_point_crossover,
    uniform_crossover,
    disturb_mutation,
    reset_mutation
)

logger = logging.getLogger(__name__)


class RenderContractError(RuntimeError):
    """Raised when a renderer returns an image that does not match the target layout."""


class ImageEvolutionTask:
    """
    Class representing the image evolution task.

    Parameters
    ----------
    img : np.ndarray
        Target image, uint8 array of shape (height, width, 3). It is never modified.
    n_triangles : int
        Number of triangles in every genome.
    opacity : float, optional
        Alpha value shared by all triangles for the whole run.
    renderer : Renderer, optional
        Renderer used for fitness evaluation. Defaults to PillowRenderer.
    """

    def __init__(
            self,
            img: np.ndarray,
            n_triangles: int,
            opacity: float = 0.15,
            renderer: Renderer = None
    ):
        if img.ndim != 3 or img.shape[2] != 3 or img.dtype != np.uint8:
            raise ValueError(f'Target image must be an RGB uint8 array, got {img.dtype} array of shape {img.shape}')
        if n_triangles < 1:
            raise ValueError('n_triangles must be positive')

        self.img = img
        self.n_triangles = n_triangles
        self.opacity = opacity
        self.renderer = renderer if renderer is not None else PillowRenderer()

        self._img_int = img.astype(np.int64)
        self._worst_possible_image_matching = None

    def get_shape(self) -> tuple[int, ...]:
        """Get the shape of the target image."""
        return self.img.shape

    def get_canvas_size(self) -> tuple[int, int]:
        """Get the (width, height) of the canvas."""
        return self.img.shape[1], self.img.shape[0]

    def render(self, genome: np.ndarray) -> np.ndarray:
        """Render a genome at the target's size, checking the renderer's output."""
        width, height = self.get_canvas_size()
        img = self.renderer.render(genome, width, height)

        if not isinstance(img, np.ndarray) or img.shape != self.img.shape or img.dtype != np.uint8:
            shape = getattr(img, 'shape', None)
            dtype = getattr(img, 'dtype', type(img).__name__)
            raise RenderContractError(
                f'{type(self.renderer).__name__} returned {dtype} image of shape {shape}, '
                f'expected uint8 image of shape {self.img.shape}')

        return img

    def evaluate(self, genome: np.ndarray) -> int:
        """Calculate the fitness of a genome: sum of squared channel differences to the target (lower is better)."""
        diff = self.render(genome).astype(np.int64) - self._img_int
        return int(np.sum(diff * diff))

    def get_worst_possible_image_matching(self) -> float:
        """Get the worst possible image matching score."""
        if self._worst_possible_image_matching is None:
            opposite_img = np.where(255 - self.img > self.img, 255, 0).astype(np.uint8)
            self._worst_possible_image_matching = np.sum(
                delta_E_CIE1976(self.img.astype(float), opposite_img.astype(float)))

        return self._worst_possible_image_matching

    def similarity(self, img: np.ndarray) -> float:
        """Perceptual similarity of an image to the target in [0, 1], used for reporting only."""
        worst = self.get_worst_possible_image_matching()
        if worst == 0:
            return 1.
        return float(np.clip(1 - np.sum(delta_E_CIE1976(self.img.astype(float), img.astype(float))) / worst, 0, 1))


class Individual:
    """
    Class representing an individual in a genetic algorithm.

    Parameters:
    ----------
    task : ImageEvolutionTask
        Image evolution task instance.
    genome : np.ndarray, optional
        Genetic representation of the individual. By default, it's initialized randomly.
    rng : np.random.Generator, optional
        Random generator used for the random initialization.
    """

    def __init__(self, task: ImageEvolutionTask, genome: np.ndarray = None, rng: np.random.Generator = None):
        self.task = task
        self.fitness = None

        if genome is None:
            if rng is None:
                raise ValueError('Either genome or rng must be specified.')
            self.genome = generate_genome(self.task.n_triangles, self.task.opacity, rng)
        else:
            self.genome = genome

    def get_img(self) -> np.ndarray:
        """Get the image representation of the individual."""
        return self.task.render(self.genome)

    def evaluate(self) -> int:
        """Calculate the fitness of the individual. The value is cached until the genome changes."""
        if self.fitness is None:
            self.fitness = self.task.evaluate(self.genome)
        return self.fitness

    def disturb(self, intensity: float, rng: np.random.Generator) -> None:
        """Apply a disturb mutation to the individual's genome."""
        self.fitness = None
        disturb_mutation(self.genome, intensity, rng)

    def reset(self, rng: np.random.Generator) -> None:
        """Apply a reset mutation to the individual's genome."""
        self.fitness = None
        reset_mutation(self.genome, rng)


class Population:
    """
    Class representing a fixed-size population of individuals, kept sorted best-first.

    Parameters:
    ----------
    task : ImageEvolutionTask
        Image evolution task instance.
    population_size : int
        Number of individuals.
    rng : np.random.Generator
        Random generator shared by all operators of the run.
    individuals : list[Individual], optional
        Initial individuals. By default, `population_size` random individuals are created.
    """

    def __init__(
            self,
            task: ImageEvolutionTask,
            population_size: int,
            rng: np.random.Generator,
            individuals: list[Individual] = None
    ):
        self.task = task
        self.rng = rng

        if individuals is None:
            individuals = [Individual(task=self.task, rng=self.rng) for _ in range(population_size)]
        elif len(individuals) != population_size:
            raise ValueError(f'Expected {population_size} individuals, got {len(individuals)}')

        self.size = population_size
        self.population = individuals

    def __len__(self) -> int:
        return len(self.population)

    def __getitem__(self, idx: int) -> Individual:
        return self.population[idx]

    def evaluate_all(self, individuals: list[Individual], executor: ThreadPoolExecutor = None) -> None:
        """Evaluate the individuals with stale fitness, in parallel if an executor is given."""
        pending = [individual for individual in individuals if individual.fitness is None]
        if executor is None:
            for individual in pending:
                individual.evaluate()
            return

        scores = executor.map(self.task.evaluate, [individual.genome for individual in pending])
        for individual, score in zip(pending, scores):
            individual.fitness = score

    def sort(self) -> None:
        """Sort the population ascending by fitness."""
        self.population.sort(key=lambda individual: individual.fitness)

    def crossover(self, slot: int, one_point_rate: float) -> None:
        """Replace the individual in a slot by a child of two random members of the population."""
        parent_1 = self.population[self.rng.integers(0, self.size)]
        parent_2 = self.population[self.rng.integers(0, self.size)]

        if self.rng.random() < one_point_rate:
            genome = one_point_crossover(parent_1.genome, parent_2.genome, self.rng)
        else:
            genome = uniform_crossover(parent_1.genome, parent_2.genome, self.rng)

        self.population[slot] = Individual(task=self.task, genome=genome)

    def mutate(self, slot: int, disturb_rate: float, disturb_scale: float) -> None:
        """Mutate the individual in a slot in place."""
        individual = self.population[slot]

        if self.rng.random() < disturb_rate:
            intensity = 0.
            while intensity == 0:
                intensity = disturb_scale * self.rng.uniform(-1, 1)
            individual.disturb(intensity, self.rng)
        else:
            individual.reset(self.rng)

    def breed_offspring(
            self,
            n_elite: int,
            crossover_rate: float,
            one_point_rate: float,
            disturb_rate: float,
            disturb_scale: float,
            executor: ThreadPoolExecutor = None
    ) -> None:
        """
        Advance the population by one generation in place.

        The best `n_elite` individuals survive unchanged together with their cached fitness. Every other
        slot, in index order, is replaced by a crossover child or has its occupant mutated. The regenerated
        slots are evaluated afterwards and the population is sorted again.
        """
        self.sort()

        for slot in range(n_elite, self.size):
            if self.rng.random() < crossover_rate:
                self.crossover(slot, one_point_rate)
            else:
                self.mutate(slot, disturb_rate, disturb_scale)

        self.evaluate_all(self.population[n_elite:], executor)
        self.sort()

    def best(self) -> Individual:
        """Get the individual with the lowest fitness."""
        return min(self.population, key=lambda individual: individual.fitness)

    def evaluate(self) -> tuple[int, float]:
        """Get the best fitness and mean fitness of all individuals."""
        fitnesses = [individual.evaluate() for individual in self.population]
        return min(fitnesses), float(np.mean(fitnesses))


class GeneticAlgorithm:
    """
    Genetic algorithm class.

    Parameters:
    ----------
    population_size : int
        Number of individuals, constant for the whole run.
    elite_fraction : float
        Fraction of the best individuals copied unchanged to the next generation.
    crossover_rate : float
        Probability that a non-elite slot is refilled by crossover rather than mutation.
    one_point_rate : float
        Probability of one-point crossover (otherwise uniform crossover is used).
    disturb_rate : float
        Probability of disturb mutation (otherwise reset mutation is used).
    disturb_scale : float
        Scale of the disturb intensity, drawn as `disturb_scale * uniform(-1, 1)` for every mutation.
    n_workers : int, optional
        Number of threads evaluating fitness in parallel. Sequential evaluation if not specified.
    seed : int, optional
        Seed of the random generator. Runs with the same seed and configuration are identical.
    """

    def __init__(
            self,
            population_size: int,
            elite_fraction: float,
            crossover_rate: float,
            one_point_rate: float,
            disturb_rate: float,
            disturb_scale: float,
            n_workers: int = None,
            seed: int = None
    ):
        if population_size < 2:
            raise ValueError('population_size must be at least 2')

        n_elite = population_size - math.ceil(population_size * (1 - elite_fraction))
        if not 0 < n_elite < population_size:
            raise ValueError(
                f'elite_fraction={elite_fraction} gives {n_elite} elites out of {population_size} individuals')

        self.population_size = population_size
        self.elite_fraction = elite_fraction
        self.n_elite = n_elite
        self.crossover_rate = crossover_rate
        self.one_point_rate = one_point_rate
        self.disturb_rate = disturb_rate
        self.disturb_scale = disturb_scale
        self.n_workers = n_workers
        self.rng = np.random.default_rng(seed)

        self.population = None
        self.generation = 0
        self._executor = None

    def initialize(self, task: ImageEvolutionTask) -> Population:
        """Create, evaluate and sort a random initial population."""
        if self.n_workers is not None and self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.n_workers)

        self.population = Population(task=task, population_size=self.population_size, rng=self.rng)
        self.population.evaluate_all(self.population.population, self._executor)
        self.population.sort()
        self.generation = 0

        logger.info('Initialized population of %d individuals (%d elites), best fitness %d',
                    self.population_size, self.n_elite, self.population.best().fitness)
        return self.population

    def step(self) -> Individual:
        """Advance the population by one generation and get the current best individual."""
        if self.population is None:
            raise RuntimeError('Population is not initialized, call initialize() first.')

        self.population.breed_offspring(
            self.n_elite, self.crossover_rate, self.one_point_rate, self.disturb_rate, self.disturb_scale,
            executor=self._executor
        )
        self.generation += 1

        best = self.best()
        logger.debug('Generation %d: best fitness %d', self.generation, best.fitness)
        return best

    def best(self) -> Individual:
        """Get the current best individual."""
        return self.population[0]

    def close(self) -> None:
        """Release the evaluation threads."""
        if self._executor is not None:
            self._executor.shutdown()
            self._executor = None

    def fit(
            self,
            task: ImageEvolutionTask,
            n_iter: int = None,
            n_seconds: float = None,
            img_history_step: int = None,
            stop_event: threading.Event = None,
            on_generation: Callable[[int, Individual], None] = None
    ) -> tuple[np.ndarray, list[tuple[int, np.ndarray]], list[int], list[float]]:
        """
        Execute the genetic algorithm on a specified image evolution task.

        The loop stops after `n_iter` generations, after `n_seconds` seconds or when `stop_event` is set,
        whichever comes first. Stopping happens only between generations.
        Returns the best img, the best img history, the best fitness history and the mean fitness history.
        """
        if n_iter is None and n_seconds is None and stop_event is None:
            raise ValueError('At least one from (n_iter, n_seconds, stop_event) params must be specified.')

        progress_bar = tqdm(desc='Image evolution', total=n_iter)

        if n_iter is None:
            n_iter = np.inf

        if n_seconds is None:
            n_seconds = np.inf

        best_fitness_history = []
        mean_fitness_history = []
        best_img_history = []

        i = 1

        try:
            self.initialize(task)
            start_time = time.time()

            while i <= n_iter and (time.time() - start_time) < n_seconds:
                if stop_event is not None and stop_event.is_set():
                    logger.info('Stop requested after %d generations', i - 1)
                    break

                best = self.step()
                best_fitness, mean_fitness = self.population.evaluate()
                best_fitness_history.append(best_fitness)
                mean_fitness_history.append(mean_fitness)

                if img_history_step is not None and (i == 1 or i % img_history_step == 0):
                    best_img = best.get_img()
                    best_img_history.append((i, best_img))
                    progress_bar.set_postfix(fitness=best_fitness, similarity=f'{task.similarity(best_img):.4f}')
                else:
                    progress_bar.set_postfix(fitness=best_fitness)

                if on_generation is not None:
                    on_generation(i, best)

                progress_bar.update(1)
                i += 1
        finally:
            progress_bar.close()
            self.close()

        best_img = self.best().get_img()
        logger.info('Finished after %d generations, best fitness %d', self.generation, self.best().fitness)

        return best_img, best_img_history, best_fitness_history, mean_fitness_history
