import logging
import random

from cluster_slot.exceptions import InvalidGridStateException
from cluster_slot.models import Cell

logger = logging.getLogger(__name__)


class SymbolGrid:
    """
    ROWS x COLUMNS matrix of symbol ids, stored row-major as ``cells[row][col]``.

    Row 0 is the top of the screen; tumbles compact survivors toward the
    bottom row and refill from the top.
    """

    def __init__(self, rules, rng=None):
        self.rules = rules
        self.rows = rules.rows
        self.columns = rules.columns
        self.rng = rng or random.Random()
        self.cells = [[rules.symbol_ids[0]] * self.columns for _ in range(self.rows)]

    def generate_column(self, length):
        """
        Generate ``length`` symbols for one column.

        A difficulty pool of ``difficulty_symbols`` distinct regular ids is drawn
        without replacement, then each cell is sampled from that pool with
        replacement. The narrow pool is what makes 8+ clusters reachable.

        Args:
            length (int): Number of symbols to produce.

        Returns:
            list[int]: Symbol ids, top to bottom.
        """
        pool_size = min(self.rules.difficulty_symbols, len(self.rules.symbol_ids))
        pool = self.rng.sample(self.rules.symbol_ids, pool_size)
        return [self.rng.choice(pool) for _ in range(length)]

    def populate(self):
        for col in range(self.columns):
            column = self.generate_column(self.rows)
            for row in range(self.rows):
                self.cells[row][col] = column[row]

    def _shuffled_cells(self):
        coords = [Cell(r, c) for r in range(self.rows) for c in range(self.columns)]
        self.rng.shuffle(coords)
        return coords

    def place_scatters(self, min_scatter, max_scatter, chance):
        """
        Overwrite cells with the scatter symbol.

        The first ``min_scatter`` shuffled cells become scatters unconditionally;
        every later cell rolls ``chance``. Placement stops once ``max_scatter``
        scatters exist.

        Returns:
            int: Number of scatters placed.
        """
        placed = self._place_special(min_scatter, max_scatter, chance,
                                     lambda: self.rules.scatter_symbol_id)
        logger.debug(f"Placed {placed} scatters (min={min_scatter}, max={max_scatter}, chance={chance})")
        return placed

    def place_bombs(self, min_bomb, max_bomb, chance, is_bonus_round):
        """
        Bonus-only multiplier bombs, placed with the same policy as scatters.

        Bombs only replace regular symbols, so scatters already on the grid survive.
        """
        if not is_bonus_round:
            return 0
        placed = self._place_special(min_bomb, max_bomb, chance, self._draw_bomb_id,
                                     replaceable=set(self.rules.symbol_ids))
        logger.debug(f"Placed {placed} bombs (min={min_bomb}, max={max_bomb}, chance={chance})")
        return placed

    def _place_special(self, minimum, maximum, chance, draw_symbol, replaceable=None):
        placed = 0
        for cell in self._shuffled_cells():
            if placed >= maximum:
                break
            if replaceable is not None and self.cells[cell.row][cell.col] not in replaceable:
                continue
            if placed < minimum or self.rng.random() < chance:
                self.cells[cell.row][cell.col] = draw_symbol()
                placed += 1
        return placed

    def _draw_bomb_id(self):
        bands = self.rules.bomb_bands
        band = self.rng.choices(bands, weights=[b.weight for b in bands], k=1)[0]
        return self.rng.randint(band.first_id, band.last_id)

    def drop_and_refill(self, cells):
        """
        Remove ``cells``, compact each column downward and refill from the top.

        Survivors keep their relative order. Vacated top slots are filled with
        ``generate_column(k)`` where k is the number of cells removed from that
        column.

        Args:
            cells (list[Cell]): Coordinates to remove.

        Returns:
            list[Cell]: Coordinates that received new symbols.
        """
        removed_by_col = {}
        for cell in cells:
            if not (0 <= cell.row < self.rows and 0 <= cell.col < self.columns):
                raise InvalidGridStateException(details={'cell': tuple(cell)})
            removed_by_col.setdefault(cell.col, set()).add(cell.row)

        added = []
        for col in sorted(removed_by_col):
            removed_rows = removed_by_col[col]
            survivors = [self.cells[r][col] for r in range(self.rows) if r not in removed_rows]
            vacated = self.rows - len(survivors)
            new_column = self.generate_column(vacated) + survivors
            for row in range(self.rows):
                self.cells[row][col] = new_column[row]
            added.extend(Cell(r, col) for r in range(vacated))
        return added

    def validate(self):
        """
        Raise InvalidGridStateException if the matrix is mis-sized or holds an unknown id.
        """
        if not isinstance(self.cells, list) or len(self.cells) != self.rows:
            raise InvalidGridStateException(details={'reason': 'row count mismatch'})
        valid_ids = self.rules.valid_symbol_ids
        for r, row in enumerate(self.cells):
            if not isinstance(row, list) or len(row) != self.columns:
                raise InvalidGridStateException(details={'reason': 'column count mismatch', 'row': r})
            for c, symbol_id in enumerate(row):
                if symbol_id not in valid_ids:
                    raise InvalidGridStateException(
                        details={'reason': 'unknown symbol', 'row': r, 'col': c, 'symbol': symbol_id}
                    )

    def snapshot(self):
        return [row[:] for row in self.cells]

    def load(self, cells):
        """Replace the matrix with a copy of ``cells`` and validate it."""
        self.cells = [list(row) for row in cells]
        self.validate()

    def count(self, symbol_id):
        return sum(row.count(symbol_id) for row in self.cells)

    def positions(self, symbol_id):
        return [Cell(r, c) for r in range(self.rows) for c in range(self.columns)
                if self.cells[r][c] == symbol_id]

    def __repr__(self):
        return f"<SymbolGrid {self.rows}x{self.columns}>"
