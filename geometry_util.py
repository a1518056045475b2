# geometry_util.py

"""
General purpose geometry functions for polygon calculations.

Points are dicts with 'x' and 'y' keys, polygons are lists of points without a
repeated closing point. Boolean, offset and Minkowski operations are delegated
to pyclipper on integer-scaled coordinates.
"""

import math
from typing import List, Dict, Optional

import pyclipper

# Floating point comparison tolerance
TOL = math.pow(10, -9)

# Distance under which a point counts as lying on a polygon boundary
BOUNDARY_TOL = math.pow(10, -6)


def _almost_equal(a, b, tolerance=None):
    if not tolerance:
        tolerance = TOL
    return abs(a - b) < tolerance


def _normalize_vector(v):
    if _almost_equal(v['x'] * v['x'] + v['y'] * v['y'], 1):
        return v  # Given vector was already a unit vector

    length = math.sqrt(v['x'] * v['x'] + v['y'] * v['y'])
    inverse = 1 / length

    return {
        'x': v['x'] * inverse,
        'y': v['y'] * inverse
    }


def _on_segment(A, B, p, tolerance=None):
    """Returns true if p lies on the line segment defined by AB, but not at any endpoints"""
    tolerance = tolerance or TOL

    # Range check
    if ((p['x'] < A['x'] - tolerance and p['x'] < B['x'] - tolerance) or
            (p['x'] > A['x'] + tolerance and p['x'] > B['x'] + tolerance) or
            (p['y'] < A['y'] - tolerance and p['y'] < B['y'] - tolerance) or
            (p['y'] > A['y'] + tolerance and p['y'] > B['y'] + tolerance)):
        return False

    # Exclude end points
    if ((_almost_equal(p['x'], A['x'], tolerance) and _almost_equal(p['y'], A['y'], tolerance)) or
            (_almost_equal(p['x'], B['x'], tolerance) and _almost_equal(p['y'], B['y'], tolerance))):
        return False

    dx = B['x'] - A['x']
    dy = B['y'] - A['y']
    length2 = dx * dx + dy * dy
    if _almost_equal(length2, 0):
        return False

    cross = (p['y'] - A['y']) * dx - (p['x'] - A['x']) * dy
    if abs(cross) / math.sqrt(length2) > tolerance:
        return False

    dot = (p['x'] - A['x']) * dx + (p['y'] - A['y']) * dy
    if dot < 0 or _almost_equal(dot, 0):
        return False

    if dot > length2 or _almost_equal(dot, length2):
        return False

    return True


def _line_intersect(A, B, E, F, infinite=False):
    a1 = B['y'] - A['y']
    b1 = A['x'] - B['x']
    c1 = B['x'] * A['y'] - A['x'] * B['y']
    a2 = F['y'] - E['y']
    b2 = E['x'] - F['x']
    c2 = F['x'] * E['y'] - E['x'] * F['y']

    denom = a1 * b2 - a2 * b1
    if denom == 0:
        return None

    x = (b1 * c2 - b2 * c1) / denom
    y = (a2 * c1 - a1 * c2) / denom

    if not math.isfinite(x) or not math.isfinite(y):
        return None

    if not infinite:
        # Coincident points do not count as intersecting
        if abs(A['x'] - B['x']) > TOL and (x < min(A['x'], B['x']) or x > max(A['x'], B['x'])):
            return None
        if abs(A['y'] - B['y']) > TOL and (y < min(A['y'], B['y']) or y > max(A['y'], B['y'])):
            return None
        if abs(E['x'] - F['x']) > TOL and (x < min(E['x'], F['x']) or x > max(E['x'], F['x'])):
            return None
        if abs(E['y'] - F['y']) > TOL and (y < min(E['y'], F['y']) or y > max(E['y'], F['y'])):
            return None

    return {'x': x, 'y': y}


def _shifted(point, offset):
    return {'x': point['x'] + offset['x'], 'y': point['y'] + offset['y']}


def _closed(polygon):
    polygon = list(polygon)
    if polygon and polygon[0] is not polygon[-1]:
        polygon.append(polygon[0])
    return polygon


ORIGIN = {'x': 0, 'y': 0}


class GeometryUtil:
    """几何工具类"""

    @staticmethod
    def almost_equal(a: float, b: float, tolerance: float = None) -> bool:
        return _almost_equal(a, b, tolerance)

    @staticmethod
    def on_segment(A: Dict, B: Dict, p: Dict, tolerance: float = None) -> bool:
        return _on_segment(A, B, p, tolerance)

    @staticmethod
    def line_intersect(A: Dict, B: Dict, E: Dict, F: Dict, infinite: bool = False) -> Optional[Dict]:
        return _line_intersect(A, B, E, F, infinite)

    @staticmethod
    def polygon_area(polygon: List[Dict]) -> float:
        """Signed area; negative for counter-clockwise loops in a y-up frame"""
        area = 0
        j = len(polygon) - 1
        for i in range(len(polygon)):
            area += (polygon[j]['x'] + polygon[i]['x']) * (polygon[j]['y'] - polygon[i]['y'])
            j = i
        return 0.5 * area

    @staticmethod
    def normalize_orientation(polygon: List[Dict]) -> List[Dict]:
        """Reverse in place if the signed area is positive. Returns the polygon."""
        if GeometryUtil.polygon_area(polygon) > 0:
            polygon.reverse()
        return polygon

    @staticmethod
    def get_polygon_bounds(polygon: List[Dict]) -> Optional[Dict]:
        if not polygon:
            return None

        xmin = xmax = polygon[0]['x']
        ymin = ymax = polygon[0]['y']

        for p in polygon[1:]:
            if p['x'] > xmax:
                xmax = p['x']
            elif p['x'] < xmin:
                xmin = p['x']

            if p['y'] > ymax:
                ymax = p['y']
            elif p['y'] < ymin:
                ymin = p['y']

        return {
            'x': xmin,
            'y': ymin,
            'width': xmax - xmin,
            'height': ymax - ymin
        }

    @staticmethod
    def point_in_polygon(point: Dict, polygon: List[Dict], offset: Dict = None,
                         tolerance: float = None) -> Optional[bool]:
        """
        Ray casting containment test.
        Returns None when the point lies on a vertex or an edge of the polygon.
        """
        if not polygon or len(polygon) < 3:
            return False

        offset = offset or ORIGIN
        inside = False

        j = len(polygon) - 1
        for i in range(len(polygon)):
            xi = polygon[i]['x'] + offset['x']
            yi = polygon[i]['y'] + offset['y']
            xj = polygon[j]['x'] + offset['x']
            yj = polygon[j]['y'] + offset['y']

            if _almost_equal(xi, point['x'], tolerance) and _almost_equal(yi, point['y'], tolerance):
                return None  # No result

            if _on_segment({'x': xi, 'y': yi}, {'x': xj, 'y': yj}, point, tolerance):
                return None  # Exactly on the segment

            if _almost_equal(xi, xj) and _almost_equal(yi, yj):  # Ignore very small lines
                j = i
                continue

            intersect = ((yi > point['y']) != (yj > point['y'])) and \
                        (point['x'] < (xj - xi) * (point['y'] - yi) / (yj - yi) + xi)
            if intersect:
                inside = not inside

            j = i

        return inside

    @staticmethod
    def rotate_polygon(polygon: List[Dict], angle: float) -> List[Dict]:
        """Rotate about the origin. Returns a new list, the input is untouched."""
        rad = angle * math.pi / 180
        cos_a = math.cos(rad)
        sin_a = math.sin(rad)

        rotated = []
        for p in polygon:
            rotated.append({
                'x': p['x'] * cos_a - p['y'] * sin_a,
                'y': p['x'] * sin_a + p['y'] * cos_a
            })
        return rotated

    @staticmethod
    def transform_polygon(polygon: List[Dict], x: float, y: float, rotation: float) -> List[Dict]:
        """Rotate about the origin, then translate by (x, y)"""
        return [{'x': p['x'] + x, 'y': p['y'] + y}
                for p in GeometryUtil.rotate_polygon(polygon, rotation)]

    @staticmethod
    def untransform_polygon(polygon: List[Dict], x: float, y: float, rotation: float) -> List[Dict]:
        """Inverse of transform_polygon"""
        shifted = [{'x': p['x'] - x, 'y': p['y'] - y} for p in polygon]
        return GeometryUtil.rotate_polygon(shifted, -rotation)

    # ===== pyclipper adapter =====

    @staticmethod
    def to_clipper_coordinates(polygon: List[Dict], scale: float) -> List[tuple]:
        return [(int(round(p['x'] * scale)), int(round(p['y'] * scale))) for p in polygon]

    @staticmethod
    def to_nest_coordinates(polygon: List[tuple], scale: float) -> List[Dict]:
        return [{'x': float(p[0]) / scale, 'y': float(p[1]) / scale} for p in polygon]

    @staticmethod
    def clean_polygon(polygon: List[Dict], tolerance: float, scale: float) -> Optional[List[Dict]]:
        """
        Remove self-intersections, keep the biggest loop and drop singularities.
        Returns None if nothing usable remains.
        """
        if not polygon or len(polygon) < 3:
            return None

        path = GeometryUtil.to_clipper_coordinates(polygon, scale)
        simple = pyclipper.SimplifyPolygon(path, pyclipper.PFT_NONZERO)
        if not simple:
            return None

        biggest = max(simple, key=lambda loop: abs(pyclipper.Area(loop)))
        clean = pyclipper.CleanPolygon(biggest, max(tolerance * scale, 1))
        if not clean or len(clean) < 3:
            return None

        return GeometryUtil.to_nest_coordinates(clean, scale)

    @staticmethod
    def polygon_offset(polygon: List[Dict], offset: float, tolerance: float, scale: float) -> List[List[Dict]]:
        """Inflate (positive offset) or deflate (negative offset) with round joins"""
        if not offset or _almost_equal(offset, 0):
            return [polygon]

        pco = pyclipper.PyclipperOffset()
        pco.MiterLimit = 2
        pco.ArcTolerance = max(tolerance * scale, 0.25)
        pco.AddPath(GeometryUtil.to_clipper_coordinates(polygon, scale),
                    pyclipper.JT_ROUND, pyclipper.ET_CLOSEDPOLYGON)

        solution = pco.Execute(offset * scale)
        return [GeometryUtil.to_nest_coordinates(path, scale) for path in solution]

    # ===== NFP helpers =====

    @staticmethod
    def intersect(A: List[Dict], B: List[Dict], a_offset: Dict = None, b_offset: Dict = None) -> bool:
        """Returns true if the edges of A and B (shifted by their offsets) cross"""
        a_offset = a_offset or ORIGIN
        b_offset = b_offset or ORIGIN

        A = _closed(A)
        B = _closed(B)

        for i in range(len(A) - 1):
            for j in range(len(B) - 1):
                a1 = _shifted(A[i], a_offset)
                a2 = _shifted(A[i + 1], a_offset)
                b1 = _shifted(B[j], b_offset)
                b2 = _shifted(B[j + 1], b_offset)

                prevbindex = len(B) - 1 if j == 0 else j - 1
                prevaindex = len(A) - 1 if i == 0 else i - 1
                nextbindex = 0 if j + 1 == len(B) - 1 else j + 2
                nextaindex = 0 if i + 1 == len(A) - 1 else i + 2

                # Go even further back if we happen to hit on a loop end point
                if B[prevbindex] is B[j] or (_almost_equal(B[prevbindex]['x'], B[j]['x']) and
                                             _almost_equal(B[prevbindex]['y'], B[j]['y'])):
                    prevbindex = len(B) - 1 if prevbindex == 0 else prevbindex - 1

                if A[prevaindex] is A[i] or (_almost_equal(A[prevaindex]['x'], A[i]['x']) and
                                             _almost_equal(A[prevaindex]['y'], A[i]['y'])):
                    prevaindex = len(A) - 1 if prevaindex == 0 else prevaindex - 1

                # Go even further forward if we happen to hit on a loop end point
                if B[nextbindex] is B[j + 1] or (_almost_equal(B[nextbindex]['x'], B[j + 1]['x']) and
                                                 _almost_equal(B[nextbindex]['y'], B[j + 1]['y'])):
                    nextbindex = 0 if nextbindex == len(B) - 1 else nextbindex + 1

                if A[nextaindex] is A[i + 1] or (_almost_equal(A[nextaindex]['x'], A[i + 1]['x']) and
                                                 _almost_equal(A[nextaindex]['y'], A[i + 1]['y'])):
                    nextaindex = 0 if nextaindex == len(A) - 1 else nextaindex + 1

                a0 = _shifted(A[prevaindex], a_offset)
                b0 = _shifted(B[prevbindex], b_offset)
                a3 = _shifted(A[nextaindex], a_offset)
                b3 = _shifted(B[nextbindex], b_offset)

                # A point on a segment could intersect or not, check via the neighboring points
                if _on_segment(a1, a2, b1) or (_almost_equal(a1['x'], b1['x']) and _almost_equal(a1['y'], b1['y'])):
                    b0in = GeometryUtil.point_in_polygon(b0, A, a_offset)
                    b2in = GeometryUtil.point_in_polygon(b2, A, a_offset)
                    if (b0in is True and b2in is False) or (b0in is False and b2in is True):
                        return True
                    continue

                if _on_segment(a1, a2, b2) or (_almost_equal(a2['x'], b2['x']) and _almost_equal(a2['y'], b2['y'])):
                    b1in = GeometryUtil.point_in_polygon(b1, A, a_offset)
                    b3in = GeometryUtil.point_in_polygon(b3, A, a_offset)
                    if (b1in is True and b3in is False) or (b1in is False and b3in is True):
                        return True
                    continue

                if _on_segment(b1, b2, a1) or (_almost_equal(a1['x'], b2['x']) and _almost_equal(a1['y'], b2['y'])):
                    a0in = GeometryUtil.point_in_polygon(a0, B, b_offset)
                    a2in = GeometryUtil.point_in_polygon(a2, B, b_offset)
                    if (a0in is True and a2in is False) or (a0in is False and a2in is True):
                        return True
                    continue

                if _on_segment(b1, b2, a2) or (_almost_equal(a2['x'], b1['x']) and _almost_equal(a2['y'], b1['y'])):
                    a1in = GeometryUtil.point_in_polygon(a1, B, b_offset)
                    a3in = GeometryUtil.point_in_polygon(a3, B, b_offset)
                    if (a1in is True and a3in is False) or (a1in is False and a3in is True):
                        return True
                    continue

                if _line_intersect(b1, b2, a1, a2) is not None:
                    return True

        return False

    @staticmethod
    def point_distance(p: Dict, s1: Dict, s2: Dict, normal: Dict, infinite: bool = False) -> Optional[float]:
        normal = _normalize_vector(normal)

        dir_vec = {
            'x': normal['y'],
            'y': -normal['x']
        }

        pdot = p['x'] * dir_vec['x'] + p['y'] * dir_vec['y']
        s1dot = s1['x'] * dir_vec['x'] + s1['y'] * dir_vec['y']
        s2dot = s2['x'] * dir_vec['x'] + s2['y'] * dir_vec['y']

        pdotnorm = p['x'] * normal['x'] + p['y'] * normal['y']
        s1dotnorm = s1['x'] * normal['x'] + s1['y'] * normal['y']
        s2dotnorm = s2['x'] * normal['x'] + s2['y'] * normal['y']

        if not infinite:
            if (((pdot < s1dot or _almost_equal(pdot, s1dot)) and (pdot < s2dot or _almost_equal(pdot, s2dot))) or
                    ((pdot > s1dot or _almost_equal(pdot, s1dot)) and (pdot > s2dot or _almost_equal(pdot, s2dot)))):
                return None  # Dot doesn't collide with segment, or lies directly on the vertex
            if (_almost_equal(pdot, s1dot) and _almost_equal(pdot, s2dot) and
                    pdotnorm > s1dotnorm and pdotnorm > s2dotnorm):
                return min(pdotnorm - s1dotnorm, pdotnorm - s2dotnorm)
            if (_almost_equal(pdot, s1dot) and _almost_equal(pdot, s2dot) and
                    pdotnorm < s1dotnorm and pdotnorm < s2dotnorm):
                return -min(s1dotnorm - pdotnorm, s2dotnorm - pdotnorm)

        return -(pdotnorm - s1dotnorm + (s1dotnorm - s2dotnorm) * (s1dot - pdot) / (s1dot - s2dot))

    @staticmethod
    def segment_distance(A: Dict, B: Dict, E: Dict, F: Dict, direction: Dict) -> Optional[float]:
        normal = {
            'x': direction['y'],
            'y': -direction['x']
        }

        reverse = {
            'x': -direction['x'],
            'y': -direction['y']
        }

        dotA = A['x'] * normal['x'] + A['y'] * normal['y']
        dotB = B['x'] * normal['x'] + B['y'] * normal['y']
        dotE = E['x'] * normal['x'] + E['y'] * normal['y']
        dotF = F['x'] * normal['x'] + F['y'] * normal['y']

        crossA = A['x'] * direction['x'] + A['y'] * direction['y']
        crossB = B['x'] * direction['x'] + B['y'] * direction['y']
        crossE = E['x'] * direction['x'] + E['y'] * direction['y']
        crossF = F['x'] * direction['x'] + F['y'] * direction['y']

        ABmin = min(dotA, dotB)
        ABmax = max(dotA, dotB)

        EFmax = max(dotE, dotF)
        EFmin = min(dotE, dotF)

        # Segments that will merely touch at one point
        if _almost_equal(ABmax, EFmin, TOL) or _almost_equal(ABmin, EFmax, TOL):
            return None
        # Segments miss each other completely
        if ABmax < EFmin or ABmin > EFmax:
            return None

        if (ABmax > EFmax and ABmin < EFmin) or (EFmax > ABmax and EFmin < ABmin):
            overlap = 1
        else:
            minMax = min(ABmax, EFmax)
            maxMin = max(ABmin, EFmin)

            maxMax = max(ABmax, EFmax)
            minMin = min(ABmin, EFmin)

            overlap = (minMax - maxMin) / (maxMax - minMin)

        crossABE = (E['y'] - A['y']) * (B['x'] - A['x']) - (E['x'] - A['x']) * (B['y'] - A['y'])
        crossABF = (F['y'] - A['y']) * (B['x'] - A['x']) - (F['x'] - A['x']) * (B['y'] - A['y'])

        # Lines are colinear
        if _almost_equal(crossABE, 0) and _almost_equal(crossABF, 0):
            ABnorm = {'x': B['y'] - A['y'], 'y': A['x'] - B['x']}
            EFnorm = {'x': F['y'] - E['y'], 'y': E['x'] - F['x']}

            ABnormlength = math.sqrt(ABnorm['x'] * ABnorm['x'] + ABnorm['y'] * ABnorm['y'])
            ABnorm['x'] /= ABnormlength
            ABnorm['y'] /= ABnormlength

            EFnormlength = math.sqrt(EFnorm['x'] * EFnorm['x'] + EFnorm['y'] * EFnorm['y'])
            EFnorm['x'] /= EFnormlength
            EFnorm['y'] /= EFnormlength

            # Segment normals must point in opposite directions
            if (abs(ABnorm['y'] * EFnorm['x'] - ABnorm['x'] * EFnorm['y']) < TOL and
                    ABnorm['y'] * EFnorm['y'] + ABnorm['x'] * EFnorm['x'] < 0):
                # Normal of AB segment must point in same direction as given direction vector
                normdot = ABnorm['y'] * direction['y'] + ABnorm['x'] * direction['x']
                # The segments merely slide along each other
                if _almost_equal(normdot, 0, TOL):
                    return None
                if normdot < 0:
                    return 0
            return None

        distances = []

        # Coincident points
        if _almost_equal(dotA, dotE):
            distances.append(crossA - crossE)
        elif _almost_equal(dotA, dotF):
            distances.append(crossA - crossF)
        elif EFmin < dotA < EFmax:
            d = GeometryUtil.point_distance(A, E, F, reverse)
            if d is not None and _almost_equal(d, 0):  # A currently touches EF, but AB is moving away from EF
                dB = GeometryUtil.point_distance(B, E, F, reverse, True)
                if dB < 0 or _almost_equal(dB * overlap, 0):
                    d = None
            if d is not None:
                distances.append(d)

        if _almost_equal(dotB, dotE):
            distances.append(crossB - crossE)
        elif _almost_equal(dotB, dotF):
            distances.append(crossB - crossF)
        elif EFmin < dotB < EFmax:
            d = GeometryUtil.point_distance(B, E, F, reverse)
            if d is not None and _almost_equal(d, 0):
                dA = GeometryUtil.point_distance(A, E, F, reverse, True)
                if dA < 0 or _almost_equal(dA * overlap, 0):
                    d = None
            if d is not None:
                distances.append(d)

        if ABmin < dotE < ABmax:
            d = GeometryUtil.point_distance(E, A, B, direction)
            if d is not None and _almost_equal(d, 0):
                dF = GeometryUtil.point_distance(F, A, B, direction, True)
                if dF < 0 or _almost_equal(dF * overlap, 0):
                    d = None
            if d is not None:
                distances.append(d)

        if ABmin < dotF < ABmax:
            d = GeometryUtil.point_distance(F, A, B, direction)
            if d is not None and _almost_equal(d, 0):
                dE = GeometryUtil.point_distance(E, A, B, direction, True)
                if dE < 0 or _almost_equal(dE * overlap, 0):
                    d = None
            if d is not None:
                distances.append(d)

        if not distances:
            return None

        return min(distances)

    @staticmethod
    def polygon_slide_distance(A: List[Dict], B: List[Dict], direction: Dict, ignore_negative: bool = False,
                               a_offset: Dict = None, b_offset: Dict = None) -> Optional[float]:
        a_offset = a_offset or ORIGIN
        b_offset = b_offset or ORIGIN

        edgeA = _closed(A)
        edgeB = _closed(B)

        distance = None
        dir_vec = _normalize_vector(direction)

        for i in range(len(edgeB) - 1):
            for j in range(len(edgeA) - 1):
                A1 = _shifted(edgeA[j], a_offset)
                A2 = _shifted(edgeA[j + 1], a_offset)
                B1 = _shifted(edgeB[i], b_offset)
                B2 = _shifted(edgeB[i + 1], b_offset)

                if ((_almost_equal(A1['x'], A2['x']) and _almost_equal(A1['y'], A2['y'])) or
                        (_almost_equal(B1['x'], B2['x']) and _almost_equal(B1['y'], B2['y']))):
                    continue  # Ignore extremely small lines

                d = GeometryUtil.segment_distance(A1, A2, B1, B2, dir_vec)

                if d is not None and (distance is None or d < distance):
                    if not ignore_negative or d > 0 or _almost_equal(d, 0):
                        distance = d

        return distance

    @staticmethod
    def polygon_projection_distance(A: List[Dict], B: List[Dict], direction: Dict,
                                    a_offset: Dict = None, b_offset: Dict = None) -> Optional[float]:
        """Project each point of B onto A in the given direction, and return the distance"""
        a_offset = a_offset or ORIGIN
        b_offset = b_offset or ORIGIN

        edgeA = _closed(A)
        edgeB = _closed(B)

        distance = None

        for i in range(len(edgeB)):
            # The shortest/most negative projection of B onto A
            minprojection = None
            p = _shifted(edgeB[i], b_offset)
            for j in range(len(edgeA) - 1):
                s1 = _shifted(edgeA[j], a_offset)
                s2 = _shifted(edgeA[j + 1], a_offset)

                if abs((s2['y'] - s1['y']) * direction['x'] - (s2['x'] - s1['x']) * direction['y']) < TOL:
                    continue

                # Project point, ignore edge boundaries
                d = GeometryUtil.point_distance(p, s1, s2, direction)

                if d is not None and (minprojection is None or d < minprojection):
                    minprojection = d

            if minprojection is not None and (distance is None or minprojection > distance):
                distance = minprojection

        return distance

    @staticmethod
    def search_start_point(A: List[Dict], B: List[Dict], inside: bool, nfp: List[List[Dict]] = None,
                           marked: set = None) -> Optional[Dict]:
        """
        Find a translation of B that touches A without overlapping it, starting
        from vertices of A not yet visited. `marked` holds visited A indices and is updated.
        """
        def in_nfp(p):
            for loop in nfp or []:
                for q in loop:
                    if _almost_equal(p['x'], q['x']) and _almost_equal(p['y'], q['y']):
                        return True
            return False

        def b_inside(offset):
            for q in B:
                inpoly = GeometryUtil.point_in_polygon(_shifted(q, offset), A)
                if inpoly is not None:
                    return inpoly
            return None

        marked = marked if marked is not None else set()

        for i in range(len(A)):
            if i in marked:
                continue
            marked.add(i)
            nexti = 0 if i == len(A) - 1 else i + 1

            for j in range(len(B)):
                offset = {'x': A[i]['x'] - B[j]['x'], 'y': A[i]['y'] - B[j]['y']}

                Binside = b_inside(offset)
                if Binside is None:  # A and B are the same
                    return None

                if Binside == inside and not GeometryUtil.intersect(A, B, b_offset=offset) \
                        and not in_nfp(offset):
                    return offset

                # Slide B along vector
                vx = A[nexti]['x'] - A[i]['x']
                vy = A[nexti]['y'] - A[i]['y']

                d1 = GeometryUtil.polygon_projection_distance(A, B, {'x': vx, 'y': vy}, b_offset=offset)
                d2 = GeometryUtil.polygon_projection_distance(B, A, {'x': -vx, 'y': -vy}, a_offset=offset)

                candidates = [d for d in (d1, d2) if d is not None]
                if not candidates:
                    continue
                d = min(candidates)

                # Only slide until no longer negative
                if _almost_equal(d, 0) or d < 0:
                    continue

                vd2 = vx * vx + vy * vy
                if d * d < vd2 and not _almost_equal(d * d, vd2):
                    vd = math.sqrt(vd2)
                    vx *= d / vd
                    vy *= d / vd

                offset = {'x': offset['x'] + vx, 'y': offset['y'] + vy}

                Binside = b_inside(offset)
                if Binside is None:
                    continue

                if Binside == inside and not GeometryUtil.intersect(A, B, b_offset=offset) \
                        and not in_nfp(offset):
                    return offset

        return None

    @staticmethod
    def is_rectangle(poly: List[Dict], tolerance: float = None) -> bool:
        bb = GeometryUtil.get_polygon_bounds(poly)
        if not bb:
            return False
        tolerance = tolerance or TOL

        for p in poly:
            if (not _almost_equal(p['x'], bb['x'], tolerance) and
                    not _almost_equal(p['x'], bb['x'] + bb['width'], tolerance)):
                return False
            if (not _almost_equal(p['y'], bb['y'], tolerance) and
                    not _almost_equal(p['y'], bb['y'] + bb['height'], tolerance)):
                return False

        return True

    @staticmethod
    def no_fit_polygon_rectangle(A: List[Dict], B: List[Dict]) -> Optional[List[List[Dict]]]:
        """Returns an interior NFP for the special case where A is a rectangle"""
        bounds_a = GeometryUtil.get_polygon_bounds(A)
        bounds_b = GeometryUtil.get_polygon_bounds(B)

        # B is larger than A in at least one direction
        if bounds_b['width'] > bounds_a['width'] + TOL or bounds_b['height'] > bounds_a['height'] + TOL:
            return None

        minAx, minAy = bounds_a['x'], bounds_a['y']
        maxAx, maxAy = minAx + bounds_a['width'], minAy + bounds_a['height']
        minBx, minBy = bounds_b['x'], bounds_b['y']
        maxBx, maxBy = minBx + bounds_b['width'], minBy + bounds_b['height']

        return [[
            {'x': minAx - minBx + B[0]['x'], 'y': minAy - minBy + B[0]['y']},
            {'x': maxAx - maxBx + B[0]['x'], 'y': minAy - minBy + B[0]['y']},
            {'x': maxAx - maxBx + B[0]['x'], 'y': maxAy - maxBy + B[0]['y']},
            {'x': minAx - minBx + B[0]['x'], 'y': maxAy - maxBy + B[0]['y']}
        ]]

    @staticmethod
    def minkowski_difference(A: List[Dict], B: List[Dict], scale: float = 10000000) -> Optional[List[List[Dict]]]:
        """
        Outer NFP of B around A as the Minkowski sum of A and -B.
        The result traces the position of B's first vertex.
        """
        Ac = GeometryUtil.to_clipper_coordinates(A, scale)
        Bc = [(-x, -y) for x, y in GeometryUtil.to_clipper_coordinates(B, scale)]

        solution = pyclipper.MinkowskiSum(Bc, Ac, True)
        if not solution:
            return None

        largest = max(solution, key=lambda loop: abs(pyclipper.Area(loop)))
        nfp = GeometryUtil.to_nest_coordinates(largest, scale)
        for p in nfp:
            p['x'] += B[0]['x']
            p['y'] += B[0]['y']

        return [nfp]

    @staticmethod
    def no_fit_polygon(A: List[Dict], B: List[Dict], inside: bool = False,
                       search_edges: bool = False) -> Optional[List[List[Dict]]]:
        """
        Given a static polygon A and a movable polygon B, compute a no fit polygon by orbiting B about A.
        If the inside flag is set, B is orbited inside of A rather than outside.
        If the search_edges flag is set, all edges of A are explored for NFPs - multiple loops may be returned.
        """
        if not A or len(A) < 3 or not B or len(B) < 3:
            return None

        marked = set()

        minAindex = min(range(len(A)), key=lambda i: A[i]['y'])
        maxBindex = max(range(len(B)), key=lambda i: B[i]['y'])

        if not inside:
            # Shift B such that the bottom-most point of B is at the top-most point of A.
            # This guarantees an initial placement with no intersections
            startpoint = {
                'x': A[minAindex]['x'] - B[maxBindex]['x'],
                'y': A[minAindex]['y'] - B[maxBindex]['y']
            }
        else:
            # No reliable heuristic for inside
            startpoint = GeometryUtil.search_start_point(A, B, True, marked=marked)

        nfp_list = []

        while startpoint is not None:
            offset = {'x': startpoint['x'], 'y': startpoint['y']}

            prevvector = None  # Keep track of previous vector
            nfp = [_shifted(B[0], offset)]

            referencex = B[0]['x'] + offset['x']
            referencey = B[0]['y'] + offset['y']
            startx = referencex
            starty = referencey
            counter = 0

            while counter < 10 * (len(A) + len(B)):  # Sanity check, prevent infinite loop
                # Find touching vertices/edges
                touching = []
                for i in range(len(A)):
                    nexti = 0 if i == len(A) - 1 else i + 1
                    for j in range(len(B)):
                        nextj = 0 if j == len(B) - 1 else j + 1
                        bj = _shifted(B[j], offset)
                        if _almost_equal(A[i]['x'], bj['x']) and _almost_equal(A[i]['y'], bj['y']):
                            touching.append((0, i, j))
                        elif _on_segment(A[i], A[nexti], bj):
                            touching.append((1, nexti, j))
                        elif _on_segment(bj, _shifted(B[nextj], offset), A[i]):
                            touching.append((2, i, nextj))

                # Generate translation vectors from touching vertices/edges
                vectors = []
                for kind, ai, bi in touching:
                    vertexA = A[ai]
                    marked.add(ai)

                    prevAindex = len(A) - 1 if ai - 1 < 0 else ai - 1
                    nextAindex = 0 if ai + 1 >= len(A) else ai + 1
                    prevA = A[prevAindex]
                    nextA = A[nextAindex]

                    vertexB = B[bi]
                    prevB = B[len(B) - 1 if bi - 1 < 0 else bi - 1]
                    nextB = B[0 if bi + 1 >= len(B) else bi + 1]

                    if kind == 0:
                        vectors.append({'x': prevA['x'] - vertexA['x'], 'y': prevA['y'] - vertexA['y'],
                                        'marks': (ai, prevAindex)})
                        vectors.append({'x': nextA['x'] - vertexA['x'], 'y': nextA['y'] - vertexA['y'],
                                        'marks': (ai, nextAindex)})
                        # B vectors need to be inverted
                        vectors.append({'x': vertexB['x'] - prevB['x'], 'y': vertexB['y'] - prevB['y'],
                                        'marks': ()})
                        vectors.append({'x': vertexB['x'] - nextB['x'], 'y': vertexB['y'] - nextB['y'],
                                        'marks': ()})
                    elif kind == 1:
                        vectors.append({'x': vertexA['x'] - (vertexB['x'] + offset['x']),
                                        'y': vertexA['y'] - (vertexB['y'] + offset['y']),
                                        'marks': (prevAindex, ai)})
                        vectors.append({'x': prevA['x'] - (vertexB['x'] + offset['x']),
                                        'y': prevA['y'] - (vertexB['y'] + offset['y']),
                                        'marks': (ai, prevAindex)})
                    else:
                        vectors.append({'x': vertexA['x'] - (vertexB['x'] + offset['x']),
                                        'y': vertexA['y'] - (vertexB['y'] + offset['y']),
                                        'marks': ()})
                        vectors.append({'x': vertexA['x'] - (prevB['x'] + offset['x']),
                                        'y': vertexA['y'] - (prevB['y'] + offset['y']),
                                        'marks': ()})

                translate = None
                maxd = 0

                for vector in vectors:
                    if vector['x'] == 0 and vector['y'] == 0:
                        continue

                    # If this vector points us back to where we came from, ignore it.
                    # ie cross product = 0, dot product < 0
                    if prevvector and vector['y'] * prevvector['y'] + vector['x'] * prevvector['x'] < 0:
                        vectorlength = math.sqrt(vector['x'] * vector['x'] + vector['y'] * vector['y'])
                        unitv = {'x': vector['x'] / vectorlength, 'y': vector['y'] / vectorlength}

                        prevlength = math.sqrt(prevvector['x'] * prevvector['x'] + prevvector['y'] * prevvector['y'])
                        prevunit = {'x': prevvector['x'] / prevlength, 'y': prevvector['y'] / prevlength}

                        if abs(unitv['y'] * prevunit['x'] - unitv['x'] * prevunit['y']) < 0.0001:
                            continue

                    d = GeometryUtil.polygon_slide_distance(A, B, vector, True, b_offset=offset)
                    vecd2 = vector['x'] * vector['x'] + vector['y'] * vector['y']

                    if d is None or d * d > vecd2:
                        d = math.sqrt(vecd2)

                    if d > maxd:
                        maxd = d
                        translate = vector

                if translate is None or _almost_equal(maxd, 0):
                    # Didn't close the loop, something went wrong here
                    nfp = None
                    break

                marked.update(translate['marks'])
                prevvector = translate

                # Trim
                vlength2 = translate['x'] * translate['x'] + translate['y'] * translate['y']
                tx, ty = translate['x'], translate['y']
                if maxd * maxd < vlength2 and not _almost_equal(maxd * maxd, vlength2):
                    scale = math.sqrt((maxd * maxd) / vlength2)
                    tx *= scale
                    ty *= scale
                    prevvector = {'x': tx, 'y': ty}

                referencex += tx
                referencey += ty

                if _almost_equal(referencex, startx) and _almost_equal(referencey, starty):
                    # We've made a full loop
                    break

                # If A and B start on a touching horizontal line, the end point may not be the start point
                looped = any(_almost_equal(referencex, p['x']) and _almost_equal(referencey, p['y'])
                             for p in nfp[:-1])
                if looped:
                    break

                nfp.append({'x': referencex, 'y': referencey})

                offset = {'x': offset['x'] + tx, 'y': offset['y'] + ty}
                counter += 1

            if nfp:
                nfp_list.append(nfp)

            if not search_edges:
                # Only get outer NFP or first inner NFP
                break

            startpoint = GeometryUtil.search_start_point(A, B, inside, nfp_list, marked)

        return nfp_list
